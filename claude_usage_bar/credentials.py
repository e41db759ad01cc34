import logging
import os
import tempfile
import threading

from .codec import SecretCodec
from .config import app_dir
from .errors import CryptoError
from .events import Observable
from .models import CredentialRecord

log = logging.getLogger(__name__)

CREDENTIALS_NAME = "credentials.enc"


class CredentialStore:
    """
    Owner of the single credential record.

    The record lives encrypted in one file and in an in-memory cache. The
    file is read and decrypted at most once per process; every save
    rewrites the whole blob via temp file + os.replace, so readers see
    either the old or the new record, never a mix.
    """

    def __init__(self, path: str | None = None, codec: SecretCodec | None = None):
        self.path = path or os.path.join(app_dir(), CREDENTIALS_NAME)
        self._codec = codec or SecretCodec()
        self._lock = threading.RLock()
        self._cache: CredentialRecord | None = None
        self._loaded = False
        self.changes = Observable()

    def get(self) -> CredentialRecord | None:
        with self._lock:
            if not self._loaded:
                self._cache = self._load()
                self._loaded = True
            return self._cache

    @property
    def has_credentials(self) -> bool:
        return self.get() is not None

    def set(self, session_token: str, organization_id: str) -> CredentialRecord:
        record = CredentialRecord(session_token.strip(), organization_id.strip())
        blob = self._codec.encrypt(record.to_json())
        with self._lock:
            self._write_atomic(blob)
            self._cache = record
            self._loaded = True
        log.info("credentials saved (org %s)", record.organization_id)
        self.changes.emit(record)
        return record

    def clear(self):
        with self._lock:
            had = self._cache is not None
            try:
                os.remove(self.path)
                had = True
            except FileNotFoundError:
                pass
            self._cache = None
            self._loaded = True
        if had:
            log.info("credentials cleared")
            self.changes.emit(None)

    # ── file storage ─────────────────────────────────────────────────────────

    def _load(self) -> CredentialRecord | None:
        try:
            with open(self.path, "rb") as f:
                blob = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning("could not read credentials file %s: %s", self.path, e)
            return None
        try:
            return CredentialRecord.from_json(self._codec.decrypt(blob))
        except CryptoError as e:
            log.warning("credentials file unreadable (%s); treating as signed out", e)
        except ValueError as e:
            log.warning("credentials file malformed (%s); treating as signed out", e)
        return None

    def _write_atomic(self, blob: bytes):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".credentials-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise
