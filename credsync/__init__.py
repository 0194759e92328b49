"""
credsync — declarative SSH private-key credentials for a remote credential store.

Secrets are never written to local state. Each secret is tracked by a keyed
fingerprint so re-applying an unchanged declaration sends nothing.
"""

__version__ = "0.1.0"
