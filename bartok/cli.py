# bartok/cli.py
"""
Simple CLI frontend for bartok. Can be used in scripts and scanner stations.
"""
import argparse, sys
from .barcode_tokens import consume_token, get_token, is_token_valid, issue_token
from .errors import RenderError, StoreUnavailable
from .render import render_png
from .utils import logger

def _write_png(code: str, path: str) -> None:
    with open(path, "wb") as f:
        f.write(render_png(code))
    print(f"image: {path}")

def main(argv=None):
    p = argparse.ArgumentParser(description="bartok – single-use barcodes")
    sub = p.add_subparsers(dest="command", required=True)

    issue = sub.add_parser("issue", help="issue a new barcode for a subject")
    issue.add_argument("subject", help="subject ID (user, ticket, ...)")
    issue.add_argument("--png", metavar="FILE", help="also write the barcode image to FILE")

    show = sub.add_parser("show", help="show the stored barcode state")
    show.add_argument("subject")
    show.add_argument("--png", metavar="FILE", help="write the active barcode image to FILE")

    validate = sub.add_parser("validate", help="exit 0 if the barcode is usable, 1 otherwise")
    validate.add_argument("subject")

    consume = sub.add_parser("consume", help="mark the barcode as used")
    consume.add_argument("subject")

    sub.add_parser("serve", help="run the HTTP server")

    args = p.parse_args(argv)

    if args.command == "serve":
        from .server import run
        run()
        return 0

    try:
        if args.command == "issue":
            token = issue_token(args.subject)
            print(token.code)
            print(f"expires: {token.expires_at.isoformat()}")
            if args.png:
                _write_png(token.code, args.png)
            return 0

        if args.command == "show":
            record = get_token(args.subject)
            if record is None:
                print("absent")
                return 1
            ttl = "none" if record.ttl_seconds is None else f"{record.ttl_seconds:.0f}s"
            print(f"{record.status} ttl={ttl}")
            if args.png and record.code and not record.is_used:
                _write_png(record.code, args.png)
            return 0

        if args.command == "validate":
            valid = is_token_valid(args.subject)
            print("valid" if valid else "invalid")
            return 0 if valid else 1

        consume_token(args.subject)
        print("used")
        return 0
    except ValueError as e:
        logger.error("Invalid input: %s", e)
        return 2
    except StoreUnavailable as e:
        logger.error("Token store unavailable: %s", e)
        return 3
    except RenderError as e:
        logger.error("Cannot write barcode image: %s", e)
        return 4

if __name__ == "__main__":
    sys.exit(main())
