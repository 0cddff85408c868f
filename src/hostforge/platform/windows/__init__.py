"""
HostForge Windows Platform Backend.

Implements platform collaborators using Windows facilities:
- winreg and advapi32 for registry values and the pending rename ledger
- psutil, sc.exe and PowerShell for the service control manager
- user32 and PowerShell Start-Process for process control
"""

from hostforge.platform.windows.backend import WindowsBackend
from hostforge.platform.windows.parsers import (
    decode_multi_sz,
    encode_multi_sz,
    parse_powershell_json,
)

__all__ = [
    "WindowsBackend",
    "decode_multi_sz",
    "encode_multi_sz",
    "parse_powershell_json",
]
