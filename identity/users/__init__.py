"""
Identity Backend - User Accounts

Role profiles, per-role stores and the generic account lifecycle engine.
"""
