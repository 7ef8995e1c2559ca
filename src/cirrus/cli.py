from __future__ import annotations

import argparse
import json
import os

from .config import load_config
from .crypto.timestamp import FORMATTERS, utcnow
from .hashing.treehash import tree_hash
from .http.models import Request, credentials_from_config
from .http.payload import Payload
from .multipart.slicer import PartSizeBounds, SlicingStrategy
from .signers.registry import build_signer


def cmd_treehash(args: argparse.Namespace) -> int:
    th = tree_hash(Payload.from_file(args.input))
    print(json.dumps({"linear": th.linear_hex, "tree": th.tree_hex}))
    return 0


def _length(value: str) -> int:
    if os.path.exists(value):
        return os.path.getsize(value)
    return int(value)


def cmd_slices(args: argparse.Namespace) -> int:
    cfg = load_config()
    bounds = PartSizeBounds(
        min_part_size=args.min_part_size or cfg.min_part_size,
        max_part_size=cfg.max_part_size,
        max_parts=args.max_parts or cfg.max_parts,
    )
    length = _length(args.target)
    # slices are computed over a lazy payload so nothing is read
    slicer = SlicingStrategy(bounds)
    slicer.start_slicing(Payload(path=os.devnull, size=length))
    print(f"part_size={slicer.part_size}")
    for piece in slicer:
        print(f"{piece.part_number}\t{piece.range.header()}")
    return 0


def _request(args: argparse.Namespace) -> Request:
    headers = []
    for h in args.header or []:
        k, _, v = h.partition(":")
        headers.append((k.strip(), v.strip()))
    return Request.build(args.method, args.url, headers=headers)


def _signer(args: argparse.Namespace):
    cfg = load_config()
    if args.scheme:
        cfg = cfg.model_copy(update={"scheme": args.scheme})
    signer = build_signer(cfg)
    creds = credentials_from_config(cfg)()
    timestamp = FORMATTERS[signer.timestamp_format](utcnow())
    return cfg, signer, creds, timestamp


def cmd_sign(args: argparse.Namespace) -> int:
    _, signer, creds, timestamp = _signer(args)
    signed = signer.sign(_request(args), creds, timestamp)
    for k, v in signed.headers:
        print(f"{k}: {v}")
    return 0


def cmd_presign(args: argparse.Namespace) -> int:
    cfg, signer, creds, timestamp = _signer(args)
    if not hasattr(signer, "presign"):
        print(f"scheme {cfg.scheme} has no pre-signed URL form")
        return 2
    signed = signer.presign(_request(args), creds, timestamp, args.expires or cfg.presign_expires_s)
    print(signed.url)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser("cirrus")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_th = sub.add_parser("treehash")
    p_th.add_argument("input")
    p_th.set_defaults(func=cmd_treehash)

    p_sl = sub.add_parser("slices")
    p_sl.add_argument("target", help="payload length in bytes, or a file path")
    p_sl.add_argument("--min-part-size", dest="min_part_size", type=int)
    p_sl.add_argument("--max-parts", dest="max_parts", type=int)
    p_sl.set_defaults(func=cmd_slices)

    p_sign = sub.add_parser("sign")
    p_sign.add_argument("--method", default="GET")
    p_sign.add_argument("--url", required=True)
    p_sign.add_argument("--header", action="append", help="K:V, repeatable")
    p_sign.add_argument("--scheme", choices=["aws-v2", "aws-v4", "shared-key-lite", "oauth2"])
    p_sign.set_defaults(func=cmd_sign)

    p_pre = sub.add_parser("presign")
    p_pre.add_argument("--method", default="GET")
    p_pre.add_argument("--url", required=True)
    p_pre.add_argument("--header", action="append")
    p_pre.add_argument("--scheme", choices=["aws-v2", "aws-v4", "shared-key-lite"])
    p_pre.add_argument("--expires", type=int)
    p_pre.set_defaults(func=cmd_presign)

    args = p.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
