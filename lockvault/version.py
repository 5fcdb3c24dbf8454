"""LockVault Meta information.
   LockVault is a local-first encrypted credential store with optional
   cloud-backed synchronization across multiple vaults.
"""
__title__ = 'lockvault'
__description__ = (
   'Local-first encrypted credential store with cloud-backed '
   'multi-vault synchronization.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 LockVault Developers'
__author__ = 'LockVault Developers'
__author_email__ = 'dev@lockvault.invalid'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/lockvault/lockvault'
