from seller_session.api.client import ApiConfig, ENDPOINTS, SellerApiClient, clean_phone, login_error_message

__all__ = ["ApiConfig", "ENDPOINTS", "SellerApiClient", "clean_phone", "login_error_message"]
