"""
Core Vault

A custodial vault holding a native currency and one fungible token, with
every balance recorded in a USD unit of account priced by an oracle.
All amounts are exact integers; nothing uses float.
"""

__version__ = "1.0.0"
