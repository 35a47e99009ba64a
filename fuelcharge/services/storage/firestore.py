"""
Firestore Document Client

DESIGN DECISION: Firestore is the production document backend because:
1. Every document carries an update_time we can use as a version
2. Write batches commit atomically (all or nothing)
3. Batched writes accept a last_update_time precondition per document

That is exactly what the compare-and-set loop in DocumentLedgerStore
needs. This module only adapts the Firestore client to DocumentClient;
the balance logic lives elsewhere.
"""

from typing import Optional, Sequence

from google.api_core import exceptions as gcloud_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fuelcharge.audit import get_logger
from fuelcharge.config import FirestoreSettings, get_settings
from fuelcharge.errors import StorageUnavailableError
from fuelcharge.services.storage.document import (
    DocumentClient,
    DocumentSnapshot,
    DocumentWrite,
    VersionConflictError,
)


logger = get_logger(__name__)

# A guarded write lost the race if Firestore answers with one of these
_CONFLICT_ERRORS = (
    gcloud_exceptions.FailedPrecondition,
    gcloud_exceptions.AlreadyExists,
    gcloud_exceptions.Aborted,
    gcloud_exceptions.NotFound,
)

_UNAVAILABLE_ERRORS = (
    gcloud_exceptions.ServiceUnavailable,
    gcloud_exceptions.DeadlineExceeded,
    gcloud_exceptions.Unauthenticated,
    gcloud_exceptions.PermissionDenied,
)


class FirestoreDocumentClient(DocumentClient):
    """
    DocumentClient backed by google-cloud-firestore's async client.

    The document version is its ``update_time``.
    """

    def __init__(
        self,
        settings: Optional[FirestoreSettings] = None,
        client: Optional[firestore.AsyncClient] = None,
    ):
        self._settings = settings or get_settings().firestore
        self._client = client

    # Only network hiccups are retried; bad configuration fails at once
    @retry(
        retry=retry_if_exception_type((auth_exceptions.TransportError, gcloud_exceptions.ServiceUnavailable)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _connect(self) -> firestore.AsyncClient:
        """
        Build the Firestore client.

        Uses service account credentials when a path is configured,
        application default credentials otherwise.
        """
        credentials = None
        if self._settings.credentials_path:
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=["https://www.googleapis.com/auth/datastore"],
                )
            except FileNotFoundError:
                raise StorageUnavailableError(
                    f"Firestore credentials file not found: {self._settings.credentials_path}"
                )
        return firestore.AsyncClient(
            project=self._settings.project_id,
            credentials=credentials,
        )

    @property
    def client(self) -> firestore.AsyncClient:
        if self._client is None:
            raise StorageUnavailableError("Firestore client is not open")
        return self._client

    def _collection(self, name: str):
        return self.client.collection(f"{self._settings.collection_prefix}{name}")

    async def open(self) -> None:
        if self._client is None:
            try:
                self._client = self._connect()
            except StorageUnavailableError:
                raise
            except Exception as e:
                raise StorageUnavailableError(f"Failed to connect to Firestore: {e}") from e
        logger.info("firestore_connected", project_id=self._settings.project_id)

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    async def read(self, collection: str, doc_id: str) -> DocumentSnapshot:
        try:
            snapshot = await self._collection(collection).document(doc_id).get()
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Firestore unavailable: {e}") from e
        if not snapshot.exists:
            return DocumentSnapshot(data=None, version=None)
        return DocumentSnapshot(data=snapshot.to_dict(), version=snapshot.update_time)

    async def read_all(self, collection: str) -> list[tuple[str, dict]]:
        try:
            return [
                (snapshot.id, snapshot.to_dict())
                async for snapshot in self._collection(collection).stream()
            ]
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Firestore unavailable: {e}") from e

    async def write(self, collection: str, doc_id: str, data: dict) -> None:
        try:
            await self._collection(collection).document(doc_id).set(data)
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Firestore unavailable: {e}") from e

    async def commit(self, writes: Sequence[DocumentWrite]) -> None:
        batch = self.client.batch()
        for write in writes:
            ref = self._collection(write.collection).document(write.doc_id)
            if write.expected_version is None:
                # create() fails if the document appeared since we read it
                batch.create(ref, write.data)
            else:
                batch.update(
                    ref,
                    write.data,
                    option=self.client.write_option(last_update_time=write.expected_version),
                )
        try:
            await batch.commit()
        except _CONFLICT_ERRORS as e:
            raise VersionConflictError(str(e)) from e
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Firestore unavailable: {e}") from e

    async def ping(self) -> None:
        try:
            await self._collection("accounts").limit(1).get()
        except _UNAVAILABLE_ERRORS as e:
            raise StorageUnavailableError(f"Firestore unavailable: {e}") from e
