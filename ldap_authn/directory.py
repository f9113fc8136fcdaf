"""Credential validation against an LDAP directory."""

import ssl
from typing import Any

import structlog
from ldap3 import NONE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn

from .config import BIND_MODE_SERVICE, AuthnConfig
from .errors import DirectoryConnectError, DirectoryTransportError
from .review import DirectoryIdentity

logger = structlog.get_logger()

# Bind result codes that mean "bad credential" rather than "directory failure"
RESULT_NO_SUCH_OBJECT = 32
RESULT_INVALID_DN_SYNTAX = 34
RESULT_INAPPROPRIATE_AUTHENTICATION = 48
RESULT_INVALID_CREDENTIALS = 49
REJECTED_BIND_RESULTS = frozenset(
    {
        RESULT_NO_SUCH_OBJECT,
        RESULT_INVALID_DN_SYNTAX,
        RESULT_INAPPROPRIATE_AUTHENTICATION,
        RESULT_INVALID_CREDENTIALS,
    }
)

RESULT_SUCCESS = 0
RESULT_SIZE_LIMIT_EXCEEDED = 4
USABLE_SEARCH_RESULTS = frozenset({RESULT_SUCCESS, RESULT_SIZE_LIMIT_EXCEEDED})


def escape_filter_value(value: str) -> str:
    """Escape a value for use inside an LDAP search filter (RFC 4515)."""
    return escape_filter_chars(value)


def build_search_filter(config: AuthnConfig, principal: str, secret: str) -> str:
    """Build the person lookup filter with every user value escaped."""
    clauses = [
        f"(objectClass={escape_filter_value(config.object_class)})",
        f"({config.name_attribute}={escape_filter_value(principal)})",
    ]
    if config.password_attribute:
        clauses.append(f"({config.password_attribute}={escape_filter_value(secret)})")
    return f"(&{''.join(clauses)})"


def build_bind_dn(config: AuthnConfig, principal: str) -> str:
    """Build the bind identity for ``principal``.

    With the default ``{principal}`` template the principal is used as given
    (a full DN or a UPN). A template that builds a DN gets the principal
    RDN-escaped.
    """
    if "=" in config.bind_dn_template:
        principal = escape_rdn(principal)
    return config.bind_dn_template.replace("{principal}", principal)


def _values(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        raw = [raw]
    return [v.decode(errors="replace") if isinstance(v, bytes) else str(v) for v in raw]


class DirectoryValidator:
    """Validates a principal/secret pair with a bind followed by a search.

    Every call opens its own connection and releases it on all exit paths.
    Nothing is shared between calls except the read-only configuration.
    """

    def __init__(self, config: AuthnConfig):
        self.config = config

    def _server(self) -> Server:
        tls = None
        if self.config.start_tls or self.config.ldap_url.lower().startswith("ldaps://"):
            if self.config.ca_cert_path:
                tls = Tls(validate=ssl.CERT_REQUIRED, ca_certs_file=self.config.ca_cert_path)
            else:
                tls = Tls(validate=ssl.CERT_REQUIRED)
        return Server(
            self.config.ldap_url,
            get_info=NONE,
            connect_timeout=self.config.timeout,
            tls=tls,
        )

    def _connect(self, user: str, password: str) -> Connection:
        """Open a connection that has not been bound yet."""
        try:
            conn = Connection(
                self._server(),
                user=user,
                password=password,
                receive_timeout=self.config.timeout,
                read_only=True,
                raise_exceptions=False,
            )
            conn.open()
        except LDAPException as e:
            raise DirectoryConnectError(
                f"cannot connect to {self.config.ldap_url}: {e}"
            ) from e

        if self.config.start_tls:
            try:
                conn.start_tls()
            except LDAPException as e:
                self._release(conn)
                raise DirectoryConnectError(
                    f"StartTLS with {self.config.ldap_url} failed: {e}"
                ) from e
        return conn

    def _release(self, conn: Connection) -> None:
        try:
            conn.unbind()
        except LDAPException as e:
            logger.debug("LDAP unbind failed", error=str(e))

    def _bind(self, conn: Connection) -> bool:
        """Bind and report whether the directory accepted the credential."""
        try:
            if conn.bind():
                return True
        except LDAPException as e:
            raise DirectoryTransportError(f"LDAP bind failed: {e}") from e

        result = conn.result or {}
        code = result.get("result")
        if code in REJECTED_BIND_RESULTS:
            logger.debug("LDAP bind rejected", result=code, description=result.get("description"))
            return False
        raise DirectoryTransportError(
            f"LDAP bind failed: {result.get('description', 'unknown error')} ({code})"
        )

    def _search(self, conn: Connection, principal: str, secret: str) -> dict | None:
        """Return the first matching entry or None."""
        search_filter = build_search_filter(self.config, principal, secret)
        try:
            conn.search(
                search_base=self.config.search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=[self.config.group_attribute],
                size_limit=self.config.size_limit,
                time_limit=self.config.time_limit,
            )
        except LDAPException as e:
            raise DirectoryTransportError(f"LDAP search failed: {e}") from e

        result = conn.result or {}
        code = result.get("result")
        if code not in USABLE_SEARCH_RESULTS:
            raise DirectoryTransportError(
                f"LDAP search failed: {result.get('description', 'unknown error')} ({code})"
            )

        entries = [e for e in conn.response or [] if e.get("type") == "searchResEntry"]
        logger.debug("LDAP search completed", principal=principal, entries=len(entries))
        return entries[0] if entries else None

    def _verify_entry_password(self, dn: str, secret: str) -> bool:
        conn = self._connect(dn, secret)
        try:
            return self._bind(conn)
        finally:
            self._release(conn)

    def validate(self, principal: str, secret: str) -> DirectoryIdentity | None:
        """Check a credential and return the directory identity.

        Returns None when the directory does not confirm the credential.
        Raises DirectoryError when the directory cannot be queried.
        """
        if not principal or not secret:
            # A simple bind with an empty password is an anonymous bind
            logger.debug("Empty principal or secret", principal=principal)
            return None

        service_mode = self.config.bind_mode == BIND_MODE_SERVICE
        if service_mode:
            conn = self._connect(self.config.bind_dn, self.config.bind_password)
        else:
            conn = self._connect(build_bind_dn(self.config, principal), secret)

        try:
            if not self._bind(conn):
                if service_mode:
                    raise DirectoryTransportError("LDAP service account bind rejected")
                return None

            entry = self._search(conn, principal, secret)
        finally:
            self._release(conn)

        if entry is None:
            return None

        if service_mode and not self._verify_entry_password(entry["dn"], secret):
            return None

        attributes = entry.get("attributes") or {}
        return DirectoryIdentity(
            username=principal,
            uid=principal,
            groups=_values(attributes.get(self.config.group_attribute)),
        )
