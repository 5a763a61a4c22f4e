#
# (C) 2024, Nicolai Langfeldt, Schibsted Products and Technology
#
# Delete a tag from a docker registry that uses token authentication.
# Made to be run as a CI step, so all the options can also be given as
# GitHub Actions style INPUT_* environment variables.
#
# Usage:
#   ./registry-rm.py --registry docker.example.com --registry-path app --tag v1 \
#       --registry-user ci --registry-password secret
#

import os
import sys
import argparse
from collections import namedtuple

import requests

import Registry

DELETED = "deleted"
NOT_FOUND = "not found"
FAILED = "failed"

Outcome = namedtuple("Outcome", ["status", "message"])


def delete_tag(reg, repo, tag):
    """Look up the digest of the tag and delete the manifest by it.

    Returns a Outcome, the status is DELETED, NOT_FOUND (the tag or
    the digest was gone) or FAILED with the reason in the message.
    """

    try:
        digest = reg.get_digest(repo, tag)
        reg.delete_manifest(repo, digest)

    except Registry.TagNotFoundError as e:
        return Outcome(NOT_FOUND, str(e))

    except Registry.RegistryError as e:
        return Outcome(FAILED, str(e))

    except requests.exceptions.RequestException as e:
        return Outcome(FAILED, "Request to %s failed: %s" % (reg.registry, e))

    verb = "Deleted" if reg.do_delete else "Would delete"
    return Outcome(DELETED, "%s %s:%s (%s) from %s" % (verb, repo, tag, digest, reg.registry))


def boolean_input(value):
    """Booleans the way GitHub Actions inputs do them (YAML 1.2 core
    schema)"""

    value = value.strip()
    if value in ("true", "True", "TRUE"):
        return True
    if value in ("false", "False", "FALSE"):
        return False

    raise argparse.ArgumentTypeError(
        "'%s' is not a boolean, use true or false" % value)


def parse_args(argv=None, environ=None):
    if environ is None:
        environ = os.environ

    # Inputs from the workflow often come with stray whitespace and newlines
    def env(name, default=None):
        value = environ.get(f"INPUT_{name}")
        if value is None:
            return default
        return value.strip()

    parser = argparse.ArgumentParser(description='Delete a tag from a docker registry')
    parser.add_argument('--registry', default=env("REGISTRY"),
                        help='Registry URL, https:// is assumed if no scheme (INPUT_REGISTRY)')
    parser.add_argument('--registry-path', default=env("REGISTRY_PATH"),
                        help='Repository path in the registry (INPUT_REGISTRY_PATH)')
    parser.add_argument('--registry-user', default=env("REGISTRY_USER", ""),
                        help='User name (INPUT_REGISTRY_USER)')
    parser.add_argument('--registry-password', default=env("REGISTRY_PASSWORD", ""),
                        help='Password (INPUT_REGISTRY_PASSWORD)')
    parser.add_argument('--tag', default=env("TAG"),
                        help='Tag to delete (INPUT_TAG)')
    parser.add_argument('--ignore-not-found', type=boolean_input, nargs='?', const=True,
                        default=env("IGNORENOTFOUND") or "false",
                        help="Don't fail if the tag does not exist (INPUT_IGNORENOTFOUND)")
    parser.add_argument('-n', '--dry-run', action='store_true', default=False,
                        help="Look up the digest but don't delete anything")
    parser.add_argument('-v', '--verbose', action='store_true', default=False,
                        help='Verbose')
    parser.add_argument('-D', '--debug', action='store_true', default=False,
                        help='Debug')
    args = parser.parse_args(argv)

    for name in ('registry', 'registry_path', 'tag'):
        if not getattr(args, name):
            parser.error("--%s (or INPUT_%s) is required" %
                         (name.replace('_', '-'), name.upper()))

    args.registry = Registry.prepare_registry_url(args.registry)
    args.registry_path = Registry.trim_slashes(args.registry_path)
    args.tag = Registry.trim_slashes(args.tag)

    return args


def fail(message):
    """Exit with a failure, with a annotation if we're in GitHub Actions"""

    if os.environ.get("GITHUB_ACTIONS") == "true":
        print("::error::%s" % message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A"))

    sys.exit("Error: %s" % message)


def main(argv=None, http=requests):
    args = parse_args(argv)

    reg = Registry.Registry(args.registry, args.registry_user, args.registry_password,
                            do_delete=not args.dry_run, http=http)
    reg.verbose = args.verbose or args.debug
    reg.debug = args.debug

    outcome = delete_tag(reg, args.registry_path, args.tag)

    if outcome.status == DELETED:
        print(outcome.message)
        return

    if outcome.status == NOT_FOUND and args.ignore_not_found:
        print(outcome.message, file=sys.stderr)
        return

    fail(outcome.message)


if __name__ == "__main__":
    main()
