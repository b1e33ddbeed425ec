# store_audit/cloud_connection.py
import logging
import os
from datetime import timedelta
from typing import Callable, Optional

from google.auth import default as google_auth_default
from google.cloud import secretmanager, storage
from google.oauth2 import service_account
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from store_audit import config

logger = logging.getLogger("store_audit")


class CloudConnection:
    """
    Database URL resolution plus the Google Cloud clients the service needs.
    Nothing connects at construction time; clients are built on first use.
    """

    def __init__(self) -> None:
        self.PROJECT_ID   = config.PROJECT_ID
        self.BUCKET_NAME  = config.REPORT_BUCKET
        self.DB_HOST      = config.DB_HOST
        self.DB_PORT      = config.DB_PORT
        self.DB_NAME      = config.DB_NAME
        self.DB_USER      = config.DB_USER
        self.DB_PASSWORD  = config.DB_PASSWORD
        self.DB_SECRET_ID = config.DB_SECRET_ID
        self.DATABASE_URL = config.DATABASE_URL

        self._creds = None
        self._storage_client = None
        self._sessionmaker: Optional[sessionmaker] = None

    # -------- GCP auth / creds --------
    def _build_creds(self):
        if self._creds is None:
            key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
            scopes = ["https://www.googleapis.com/auth/cloud-platform"]
            if key_path and os.path.exists(key_path):
                self._creds = service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
            else:
                self._creds, _ = google_auth_default(scopes=scopes)
        return self._creds

    @property
    def storage_client(self) -> storage.Client:
        if self._storage_client is None:
            self._storage_client = storage.Client(project=self.PROJECT_ID or None, credentials=self._build_creds())
        return self._storage_client

    # -------- DB password (Secret Manager) --------
    def _get_db_password_lazy(self) -> str:
        if self.DB_PASSWORD:
            return self.DB_PASSWORD
        if self.DB_SECRET_ID:
            client = secretmanager.SecretManagerServiceClient(credentials=self._build_creds())
            name = client.secret_version_path(self.PROJECT_ID, self.DB_SECRET_ID, "latest")
            resp = client.access_secret_version(request={"name": name})
            self.DB_PASSWORD = resp.payload.data.decode("utf-8")
            return self.DB_PASSWORD
        raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")

    @property
    def database_configured(self) -> bool:
        return bool(self.DATABASE_URL or (self.DB_HOST and self.DB_NAME and self.DB_USER))

    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        password = self._get_db_password_lazy()
        return f"postgresql+pg8000://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # -------- SQLAlchemy Session factory --------
    def build_db_session_factory(self) -> Optional[Callable[[], Session]]:
        """
        None when no database is configured; the service then runs on the
        built-in master data and keeps finalized audits in memory only.
        """
        if not self.database_configured:
            logger.warning("[DB] No database configured; running without persistence.")
            return None

        if self._sessionmaker is None:
            url = self.database_url()
            connect_args = {"timeout": 10} if url.startswith("postgresql+pg8000") else {}
            engine = create_engine(url, future=True, pool_pre_ping=True, connect_args=connect_args)
            logger.info(f"[DB] Connecting to {engine.url.render_as_string(hide_password=True)}")
            self._sessionmaker = sessionmaker(bind=engine, autoflush=False, future=True)

        def _factory() -> Session:
            return self._sessionmaker()

        return _factory

    # -------- Report sharing --------
    def share_pdf(self, folio: str, pdf_bytes: bytes) -> Optional[str]:
        """
        Upload a rendered report under reports/<folio>.pdf and return a v4
        signed GET link (7 days at most). None when no bucket is configured
        or the link cannot be signed; upload errors propagate.
        """
        if not self.BUCKET_NAME:
            return None
        blob = self.storage_client.bucket(self.BUCKET_NAME).blob(f"reports/{folio}.pdf")
        blob.upload_from_string(pdf_bytes, content_type="application/pdf")
        logger.info(f"[GCS] Report uploaded: gs://{self.BUCKET_NAME}/{blob.name}")
        try:
            return blob.generate_signed_url(
                version="v4",
                expiration=timedelta(seconds=min(config.SIGNED_URL_SECONDS, 604800)),
                method="GET",
                credentials=self._build_creds(),
            )
        except Exception as e:
            logger.warning(f"[GCS] Could not sign report link for {folio}: {e}")
            return None
