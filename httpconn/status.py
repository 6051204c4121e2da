from enum import IntEnum


class HttpStatus(IntEnum):
    """Standard HTTP status codes, comparable to plain ints."""

    # --- 1xx Informational ---
    CONTINUE = 100
    SWITCHING_PROTOCOLS = 101

    # --- 2xx Success ---
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    NOT_AUTHORITATIVE = 203
    NO_CONTENT = 204
    RESET = 205
    PARTIAL = 206

    # --- 3xx Redirection ---
    MULT_CHOICE = 300
    MOVED_PERM = 301
    MOVED_TEMP = 302
    SEE_OTHER = 303
    NOT_MODIFIED = 304
    USE_PROXY = 305
    TEMPORARY_REDIRECT = 307
    PERMANENT_REDIRECT = 308

    # --- 4xx Client Error ---
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    PAYMENT_REQUIRED = 402
    FORBIDDEN = 403
    NOT_FOUND = 404
    BAD_METHOD = 405
    NOT_ACCEPTABLE = 406
    PROXY_AUTH = 407
    CLIENT_TIMEOUT = 408
    CONFLICT = 409
    GONE = 410
    LENGTH_REQUIRED = 411
    PRECON_FAILED = 412
    ENTITY_TOO_LARGE = 413
    REQ_TOO_LONG = 414
    UNSUPPORTED_TYPE = 415

    # --- 5xx Server Error ---
    INTERNAL_ERROR = 500
    # Deprecated alias of INTERNAL_ERROR.
    SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    BAD_GATEWAY = 502
    UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504
    VERSION = 505


REDIRECT_CODES = frozenset({
    HttpStatus.MOVED_PERM,
    HttpStatus.MOVED_TEMP,
    HttpStatus.SEE_OTHER,
    HttpStatus.TEMPORARY_REDIRECT,
    HttpStatus.PERMANENT_REDIRECT,
})
