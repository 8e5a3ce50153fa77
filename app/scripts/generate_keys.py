"""
Generate the RSA keypair used to sign RS256 access tokens. Run from project root:
  python -m app.scripts.generate_keys [--out keys] [--bits 2048] [--force]

Keep keys/ out of version control; generate fresh keys on each server.
"""
import argparse
import os
import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def generate_keypair(bits: int = 2048) -> tuple[str, str]:
    """Return (private PEM in PKCS#8, public PEM in SubjectPublicKeyInfo)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate the RS256 JWT keypair.")
    parser.add_argument("--out", default="keys", help="Output directory (default: keys)")
    parser.add_argument("--bits", type=int, default=2048, choices=[2048, 3072, 4096])
    parser.add_argument("--force", action="store_true", help="Overwrite existing keys")
    args = parser.parse_args(argv)

    out = Path(args.out)
    private_path = out / "private.pem"
    public_path = out / "public.pem"
    if not args.force and (private_path.exists() or public_path.exists()):
        print(f"Keys already exist in {out}/ (use --force to replace).", file=sys.stderr)
        return 1

    private_pem, public_pem = generate_keypair(args.bits)
    out.mkdir(parents=True, exist_ok=True)
    private_path.write_text(private_pem, encoding="ascii")
    os.chmod(private_path, 0o600)
    public_path.write_text(public_pem, encoding="ascii")
    os.chmod(public_path, 0o644)
    print(f"Private key: {private_path}")
    print(f"Public key:  {public_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
