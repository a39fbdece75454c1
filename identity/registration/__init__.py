"""
Identity Backend - Registration Support

Email availability cache and cleanup of abandoned registrations.
"""
