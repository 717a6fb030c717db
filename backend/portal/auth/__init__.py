"""Authentication module (Amazon Cognito user pools + Hosted UI).

Services:
    - CognitoAuthService: user pool API (sign-up, sign-in, MFA, passwords).
    - HostedUIService: federated social sign-in via the Hosted UI.
"""
