# app_context.py (v1.4)
import logging

from history_store import D1HistoryStore
from image_storage import ImageStorage, create_r2_client
from supabase_client import SupabaseClient


class AppContext:
    """A centralized object to hold the service clients and configuration."""
    def __init__(self, supabase_client, secrets, settings, storage=None, history=None):
        self.client = supabase_client
        self.secrets = secrets
        self.settings = settings
        self.storage = storage
        self.history = history
        self.warnings = []

    @property
    def session(self):
        return self.client.session

    @property
    def user_id(self):
        return self.client.user_id

    @classmethod
    def from_config(cls, secrets, settings):
        client = SupabaseClient(secrets["SUPABASE_URL"], secrets["SUPABASE_ANON_KEY"])
        context = cls(client, secrets, settings)
        context.resolve_services()
        return context

    def resolve_services(self):
        """
        Builds the optional collaborators (image storage, scan history) from
        the secrets. Missing credentials disable the feature with a warning
        instead of stopping the app.
        """
        self.warnings = []
        r2_keys = ("R2_ACCOUNT_ID", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_BUCKET_NAME", "R2_PUBLIC_URL")
        missing_r2 = [key for key in r2_keys if not self.secrets.get(key)]
        if missing_r2:
            message = f"Configuration Warning: image uploads disabled, missing {', '.join(missing_r2)}."
            logging.warning(message); self.warnings.append(message)
            self.storage = None
        else:
            s3_client = create_r2_client(self.secrets["R2_ACCOUNT_ID"], self.secrets["R2_ACCESS_KEY_ID"], self.secrets["R2_SECRET_ACCESS_KEY"])
            self.storage = ImageStorage(s3_client, self.secrets["R2_BUCKET_NAME"], self.secrets["R2_PUBLIC_URL"], self.settings["images"])

        self.history = D1HistoryStore(
            self.secrets.get("CLOUDFLARE_ACCOUNT_ID"),
            self.secrets.get("CLOUDFLARE_DATABASE_ID"),
            self.secrets.get("CLOUDFLARE_D1_TOKEN"),
        )
        if not self.history.configured:
            message = "Configuration Warning: scan history disabled, Cloudflare D1 credentials missing."
            logging.warning(message); self.warnings.append(message)
        return self.warnings
