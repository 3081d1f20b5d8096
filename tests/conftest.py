import os
import tempfile

# configuração de teste antes de qualquer import de kyc_backend
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["IP2LOCATION_API_KEY"] = ""
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["NOTIFY_EMAIL"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_CHAT_ID"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="kyc-uploads-")
