"""
Core package for DuoChat: domain records, errors, wire protocol,
logging and the real-time server components.
"""
