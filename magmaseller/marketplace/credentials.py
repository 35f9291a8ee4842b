import logging
import os
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from magmaseller.errors import (
    CredentialNotFound,
    MagmaSellerError,
    RenewalFailed,
)
from magmaseller.ln.base import NodeBase
from magmaseller.magma.base import MarketplaceBase
from magmaseller.settings import MagmaSettings

logger = logging.getLogger(name=__name__)


class CredentialState(str, Enum):
    ABSENT = 'ABSENT'
    CACHED = 'CACHED'
    ACTIVE = 'ACTIVE'
    EXPIRED = 'EXPIRED'
    REJECTED = 'REJECTED'


@dataclass
class Credential:
    token: str
    expiration: Optional[int] = None

    @property
    def is_expired(self) -> bool:
        return self.expiration is not None and time.time() >= self.expiration


class CredentialManager:
    """
    Owns the Magma API key: load it from the cache file, mint a new one by
    signing the marketplace challenge with the node key, and persist it.

    Only one credential is held at a time and it is swapped wholesale. Once the
    marketplace rejects it, it is never handed to the client again.
    """
    def __init__(
            self,
            cache_path: str = MagmaSettings().credential_cache_path,
            preset_api_key: Optional[str] = None,
            lifetime_seconds: int = MagmaSettings().api_key_lifetime_seconds,
            description: str = MagmaSettings().api_key_description):
        self.cache_path = Path(cache_path)
        self.preset_api_key = preset_api_key
        self.lifetime_seconds = lifetime_seconds
        self.description = description
        self.credential: Optional[Credential] = None
        self.state = CredentialState.ABSENT

    def refresh_state(self) -> CredentialState:
        """move a credential past its expiration to EXPIRED"""
        if self.credential and self.credential.is_expired:
            logger.info('Magma API key expired')
            self.state = CredentialState.EXPIRED
        return self.state

    @property
    def needs_renewal(self) -> bool:
        return self.state in (
            CredentialState.ABSENT,
            CredentialState.EXPIRED,
            CredentialState.REJECTED,
        )

    def load_cached(self) -> Credential:
        """read the cached key, the marketplace is not consulted"""
        try:
            token = self.cache_path.read_text(encoding='utf-8').strip()
        except FileNotFoundError:
            raise CredentialNotFound(f'no cached credential at {self.cache_path}')
        except OSError as e:
            raise CredentialNotFound(
                f'could not read cached credential {self.cache_path}: {e}') from e

        if not token:
            raise CredentialNotFound(f'cached credential {self.cache_path} is empty')

        self.credential = Credential(token=token)
        self.state = CredentialState.CACHED
        logger.debug(f'loaded cached credential from {self.cache_path}')
        return self.credential

    def persist(self, credential: Credential) -> None:
        """overwrite the single cache slot atomically"""
        directory = self.cache_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.magma-api-key.')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(credential.token)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.cache_path)
        finally:
            # only left behind when the replace did not happen
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        logger.debug(f'credential written to {self.cache_path}')

    def activate(self, marketplace: MarketplaceBase) -> None:
        marketplace.use_credential(self.credential.token if self.credential else None)
        if self.credential:
            self.state = CredentialState.ACTIVE

    def mark_rejected(self, marketplace: Optional[MarketplaceBase] = None) -> None:
        logger.warning('marketplace rejected the current credential')
        self.state = CredentialState.REJECTED
        self.credential = None
        if marketplace:
            marketplace.use_credential(None)

    async def renew_via_node(
            self,
            node: NodeBase,
            marketplace: MarketplaceBase) -> Credential:
        """
        challenge -> node signature -> login token -> scoped api key

        any failing leg raises RenewalFailed, retrying is left to the caller
        """
        logger.info('requesting a new Magma API key')
        try:
            sign_info = await marketplace.get_sign_info()
            signed = await node.sign_message(sign_info.message)
            if signed.error_message or not signed.signature:
                raise RenewalFailed(
                    f'node could not sign login challenge: {signed.error_message}')
            login_token = await marketplace.login(
                identifier=sign_info.identifier,
                signature=signed.signature)
            api_key = await marketplace.create_api_key(
                token=login_token,
                seconds=self.lifetime_seconds,
                description=self.description)
        except RenewalFailed:
            raise
        except MagmaSellerError as e:
            raise RenewalFailed(f'could not renew Magma API key: {e}') from e

        credential = Credential(
            token=api_key,
            expiration=int(time.time()) + self.lifetime_seconds)
        try:
            self.persist(credential)
        except OSError as e:
            raise RenewalFailed(
                f'could not persist credential to {self.cache_path}: {e}') from e

        self.credential = credential
        self.activate(marketplace)
        logger.info('Magma API key acquired')
        return credential

    async def ensure_credential(
            self,
            node: NodeBase,
            marketplace: MarketplaceBase) -> Credential:
        """startup path: preset key, then cached key, then a fresh login"""
        if self.preset_api_key:
            self.credential = Credential(token=self.preset_api_key)
        else:
            try:
                self.load_cached()
            except CredentialNotFound as e:
                logger.info(f'{e}, logging in with node signature')
                return await self.renew_via_node(node=node, marketplace=marketplace)

        self.activate(marketplace)
        return self.credential
