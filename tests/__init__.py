"""
ExamCoach Access Test Suite

Covers:
- Duplicate registration guard and registration
- Two-factor login coordination
- OTP providers and send throttling
- Trial/subscription access gate
- Paystack webhook processing
- Admin operations and the HTTP API

Run tests with:
    pytest tests/ -v
"""
