# config.py
import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self):
        self.PROJECT_NAME = "AG-Gems Jewelry API"
        self.ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "*")

        self.DATABASE_URL = os.getenv("DATABASE_URL")
        self.DATABASE_NAME = os.getenv("DATABASE_NAME", "jewelry_store")

        self.JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
        self.JWT_ALG = os.getenv("JWT_ALG", "HS256")
        self.TOKEN_EXPIRE_MIN = int(os.getenv("TOKEN_EXPIRE_MIN", str(60 * 24 * 7)))
        self.PASSWORD_RESET_EXPIRE_MIN = int(os.getenv("PASSWORD_RESET_EXPIRE_MIN", "60"))

        self.LOGIN_RATE_LIMIT_MAX = int(os.getenv("LOGIN_RATE_LIMIT_MAX", "5"))
        self.LOGIN_RATE_LIMIT_WINDOW_SEC = int(os.getenv("LOGIN_RATE_LIMIT_WINDOW_SEC", str(60 * 15)))

        self.RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
        self.RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
        self.RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")

        self.ETH_RPC_URL = os.getenv("ETH_RPC_URL")
        self.PAYMENT_WALLET_ADDRESS = os.getenv("PAYMENT_WALLET_ADDRESS", "")
        # "rpc" checks transactions on chain, "mock" accepts them after a short delay
        self.CHAIN_VERIFIER = os.getenv("CHAIN_VERIFIER") or ("rpc" if self.is_production else "mock")

        self.PRICE_FEED_URL = os.getenv(
            "PRICE_FEED_URL",
            "https://api.coingecko.com/api/v3/simple/price?ids=ethereum&vs_currencies=inr",
        )
        self.HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()
