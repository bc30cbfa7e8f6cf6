import argparse
import json
import logging
import sys

from nvtopology import AttestationClient, Arch, options_from_env
from nvtopology.attestation import AttestationError
from nvtopology.attestation.remote import evidence_from_dicts


def main():
    parser = argparse.ArgumentParser(description="Submit saved evidence to NRAS")
    parser.add_argument("evidence", help="JSON file with a list of {certificate, evidence} entries")
    parser.add_argument("nonce", help="Hex nonce the evidence was collected with")
    parser.add_argument("--arch", choices=[a.value for a in Arch], default=Arch.HOPPER.value)
    args = parser.parse_args()

    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", level=logging.INFO)

    with open(args.evidence) as f:
        evidence = evidence_from_dicts(json.load(f))

    client = AttestationClient(Arch(args.arch), options_from_env())
    try:
        passed, _ = client.submit(evidence, args.nonce)
    except AttestationError as e:
        logging.error("Attestation failed: %s", e)
        sys.exit(1)

    logging.info("Attestation %s", "passed" if passed else "failed")
    sys.exit(0 if passed else 2)


if __name__ == "__main__":
    main()
