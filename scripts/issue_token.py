import sys
import os
sys.path.append(os.getcwd())
import argparse
from datetime import timedelta

from app.utils import create_access_token, decode_access_token


def main() -> None:
    parser = argparse.ArgumentParser(description="Mint a bearer token for local testing.")
    parser.add_argument("owner_id", type=int, help="users.id the token authenticates as")
    parser.add_argument("--minutes", type=int, default=60, help="token lifetime")
    args = parser.parse_args()

    token = create_access_token(str(args.owner_id), timedelta(minutes=args.minutes))
    payload = decode_access_token(token)
    print(f"# owner={payload.sub} expires={payload.exp.isoformat()}")
    print(token)


if __name__ == "__main__":
    main()
