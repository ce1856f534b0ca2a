"""
Infrastructure Package
======================

Application-wide technical services (database engine and sessions).
"""
