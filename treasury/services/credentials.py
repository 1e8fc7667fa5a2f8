"""
Credential Store Collaborator

The identity service owns credentials. The reset workflow only tells it
to swap in an approved candidate, identified by reference.
"""

from abc import ABC, abstractmethod


class CredentialStoreInterface(ABC):
    """Identity service operations used by the credential reset workflow."""

    @abstractmethod
    async def apply_credential(self, identity_id: str, candidate_ref: str) -> None:
        """Make the candidate the identity's active credential."""
        pass


class InMemoryCredentialStore(CredentialStoreInterface):
    """Keeps the active credential reference per identity."""

    def __init__(self):
        self.active: dict[str, str] = {}

    async def apply_credential(self, identity_id: str, candidate_ref: str) -> None:
        self.active[identity_id] = candidate_ref
