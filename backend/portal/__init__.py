"""Cognito Auth Portal: browser sign-up and login pages backed by Amazon Cognito."""
