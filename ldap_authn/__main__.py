"""Entry point for the LDAP authentication webhook."""

import argparse
import sys

import structlog

from .config import BIND_MODES, load_config
from .errors import ConfigError
from .logging import configure_logging
from .server import main as serve

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ldap-authn",
        description="Kubernetes TokenReview webhook backed by an LDAP directory.",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("-H", dest="ldap_url", help="URI to the ldap server")
    parser.add_argument("-D", dest="bind_dn", help="binddn to bind to the LDAP directory")
    parser.add_argument("-b", dest="search_base", help="search base")
    parser.add_argument("-w", dest="bind_password", help="password for simple authentication")
    parser.add_argument("-l", dest="listen_address", help="listen address")
    parser.add_argument("--tls-certificate", dest="tls_cert", help="certificate file")
    parser.add_argument("--tls-key", dest="tls_key", help="private key file")
    parser.add_argument(
        "--bind-mode",
        dest="bind_mode",
        choices=BIND_MODES,
        help="bind as the caller or as the service account before searching",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = vars(build_parser().parse_args(argv))
    config_file = args.pop("config")

    try:
        config = load_config(config_file=config_file, overrides=args)
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    serve(config)
    return 0


if __name__ == "__main__":
    sys.exit(main())
