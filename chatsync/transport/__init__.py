from chatsync.transport.http import ClientConfig, HttpTransport, auth_headers

__all__ = ["ClientConfig", "HttpTransport", "auth_headers"]
