import argparse
import asyncio
import base64
import logging
from datetime import timedelta

from cryptography.fernet import Fernet
from jwcrypto import jwk
from ulid import ULID

from social.graze.signin.authentication.secret import ClientSecretGenerator

logger = logging.getLogger(__name__)


async def genJwk() -> None:
    key = jwk.JWK.generate(kty="EC", crv="P-256", kid=str(ULID()), alg="ES256")
    print(key.export(private_key=True))


async def genCryptoKey() -> None:
    key = Fernet.generate_key()
    print(base64.b64encode(key).decode("utf-8"))


async def genClientSecret(
    private_key_path: str, key_id: str, team_id: str, client_id: str, days: int
) -> None:
    with open(private_key_path, "rb") as fd:
        private_key = jwk.JWK.from_pem(fd.read())

    generator = ClientSecretGenerator(
        private_key=private_key,
        key_id=key_id,
        team_id=team_id,
        client_id=client_id,
        lifetime=timedelta(days=days),
    )
    print(await generator.generate())


async def realMain() -> None:
    parser = argparse.ArgumentParser(
        prog="signinutil", description="Sign in with Apple utilities"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    _ = subparsers.add_parser("gen-jwk", help="Generate a JWK")
    _ = subparsers.add_parser("gen-crypto", help="Generate an encryption key")
    gen_client_secret = subparsers.add_parser(
        "gen-client-secret", help="Generate a static Apple client secret"
    )

    gen_client_secret.add_argument("private_key", help="Path to the .p8 private key.")
    gen_client_secret.add_argument("key_id", help="The ID of the private key.")
    gen_client_secret.add_argument("team_id", help="The Apple developer team ID.")
    gen_client_secret.add_argument("client_id", help="The Services ID.")
    gen_client_secret.add_argument(
        "--days", type=int, default=180, help="Lifetime of the secret in days."
    )

    args = vars(parser.parse_args())
    command = args.get("command", None)

    if command == "gen-jwk":
        await genJwk()
    elif command == "gen-crypto":
        await genCryptoKey()
    elif command == "gen-client-secret":
        await genClientSecret(
            args["private_key"],
            args["key_id"],
            args["team_id"],
            args["client_id"],
            args["days"],
        )


def main() -> None:
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
