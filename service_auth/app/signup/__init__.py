"""
Sign-up flow: initiate, verify and sign in, resend verification code.

Every operation is rate limited per normalized email before the identity
provider is contacted.
"""
