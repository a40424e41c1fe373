"""Type definitions for py3wallet.

This module contains NewType definitions for domain identifiers so that
wallet ids and record ids are not confused with other strings.
"""

from typing import NewType

WalletId = NewType("WalletId", str)
"""Caller-chosen wallet name (e.g. "default")."""

RecordId = NewType("RecordId", str)
"""Secure storage record identifier (e.g. "wallet.seed.default")."""

AddressCacheKey = NewType("AddressCacheKey", str)
"""Key for the derived address cache: wallet, path, network and script type."""
