from courier.api.main import app

__all__ = ["app"]
