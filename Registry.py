#
# Docker registry API for python - with token authentication this time.
#
# (C) 2024, Nicolai Langfeldt, Schibsted Products and Technology
#
#
# Docker registry API:
# https://docs.docker.com/registry/spec/api/
# Token authentication:
# https://distribution.github.io/distribution/spec/auth/token/
#

import re
from collections import namedtuple

import requests
import www_authenticate

# The registry may hand back either kind of image manifest
MANIFEST_ACCEPT = "application/vnd.docker.distribution.manifest.v2+json, " \
                  "application/vnd.oci.image.manifest.v1+json"

AuthChallenge = namedtuple("AuthChallenge", ["realm", "service", "scope"])


## Errors

class RegistryError(Exception):
    """Base for everything that goes wrong talking to the registry.
    Carries the HTTP status and response body when there was a
    response to speak of."""

    def __init__(self, message, status=None, body=None):
        super().__init__(message)
        self.status = status
        self.body = body


class AuthDiscoveryError(RegistryError):
    pass


class TokenExchangeError(RegistryError):
    pass


class TokenResponseError(RegistryError):
    pass


class TagNotFoundError(RegistryError):
    pass


class MissingDigestError(RegistryError):
    pass


class ManifestFetchError(RegistryError):
    pass


class TagDeletionError(RegistryError):
    pass


## URL helpers

def prepare_registry_url(url):
    """Remove a trailing slash and add https:// if there is no scheme
    already."""

    url = re.sub(r"/\Z", "", url)

    if not re.match(r'^(?:f|ht)tps?://', url):
        return "https://" + url

    return url


def trim_slashes(path):
    """Remove one leading and one trailing slash, nothing else"""

    return re.sub(r"^/|/\Z", "", path)


## Responses

def _success(r):
    """Only 2xx counts, requests thinks anything below 400 is ok"""

    return 200 <= r.status_code < 300


## Token authentication

def get_auth_challenge(http, url, method="GET", headers=None):
    """Make the request without any credentials to get the registry to
    tell us where to get a token.  This has to be done against the URL
    we actually want, with the same method, since the scope in the
    answer depends on it (e.g. "repository:app:delete" for DELETE).

    Returns a AuthChallenge.
    """

    r = http.request(method, url, headers=headers)

    www_auth = r.headers.get('WWW-Authenticate')
    if not www_auth:
        raise AuthDiscoveryError(
            "Could not fetch authentication info from request with status %s: %s" %
            (r.status_code, r.text), r.status_code, r.text)

    try:
        challenges = www_authenticate.parse(www_auth)
    except ValueError:
        raise AuthDiscoveryError(
            "Unparsable WWW-Authenticate header '%s' with status %s: %s" %
            (www_auth, r.status_code, r.text), r.status_code, r.text)

    try:
        params = challenges['bearer']
    except KeyError:
        params = None

    # A bare token68 challenge comes back as a string, we need the parameters
    if params is None or isinstance(params, str):
        raise AuthDiscoveryError(
            "No Bearer challenge in WWW-Authenticate header '%s' with status %s: %s" %
            (www_auth, r.status_code, r.text), r.status_code, r.text)

    missing = [k for k in AuthChallenge._fields if k not in params or not params[k]]
    if missing:
        raise AuthDiscoveryError(
            "WWW-Authenticate header lacks %s, status %s: %s" %
            (", ".join(missing), r.status_code, r.text), r.status_code, r.text)

    return AuthChallenge(params['realm'], params['service'], params['scope'])


def get_auth_token(http, challenge, username, password):
    """Trade the user credentials for a bearer token at the realm the
    registry told us about."""

    r = http.request("GET", challenge.realm,
                     params={'service': challenge.service, 'scope': challenge.scope},
                     auth=(username, password))

    if not _success(r):
        raise TokenExchangeError("Auth failed with status %s: %s" %
                                 (r.status_code, r.text), r.status_code, r.text)

    try:
        j = r.json()
    except ValueError:
        raise TokenResponseError("Auth response was not JSON: %s" % r.text,
                                 r.status_code, r.text)

    # The token spec allows "access_token" as an alias
    token = None
    if isinstance(j, dict):
        token = j.get('token') or j.get('access_token')

    if not token:
        raise TokenResponseError("Auth response has no token: %s" % r.text,
                                 r.status_code, r.text)

    return token


class Registry:
    """Class to handle the docker registry API on a registry that uses
    token authentication.

    Example:

       import Registry

       reg = Registry.Registry("https://registry.example.com", "user", "secret")

       try:
           digest = reg.get_digest("app", "v1")
           reg.delete_manifest("app", digest)
       except Registry.TagNotFoundError as e:
           print(e)

    Every call does the whole challenge and token dance for itself, the
    tokens are scoped to the URL and method so they are not kept.
    """

    def __init__(self, registry, username, password, do_delete = True, http = requests):
        """Initialize the registry object with the registry URL (see
        prepare_registry_url) and the credentials used to get tokens.
        If you just want to look at what would be deleted by
        delete_manifest specify do_delete=False.

        http is anything with a requests.request like request method,
        by default the requests module itself.

        The registry object has debug and verbose flags which you can
        set directly to possibly get useful information.
        """

        self.registry = registry
        self.username = username
        self.password = password
        self.do_delete = do_delete
        self.http = http
        self.debug = False
        self.verbose = False


    def request(self, path, method = "GET", headers = None):
        """Make a authenticated request to {registry}/v2/{path}.  The
        headers given are put on top of the Authorization header."""

        url = f"{self.registry}/v2/{path}"

        challenge = get_auth_challenge(self.http, url, method, headers)
        if self.debug:
            print("--- Challenge: realm=%s service=%s scope=%s" % challenge)

        token = get_auth_token(self.http, challenge, self.username, self.password)

        all_headers = {"Authorization": f"Bearer {token}"}
        if headers:
            all_headers.update(headers)

        r = self.http.request(method, url, headers=all_headers)

        if self.debug:
            print("--- %s %s: %s" % (method, url, r.status_code))

        return r


    def get_digest(self, repo, tag):
        """Get the digest of the manifest a tag points to. The digest is
        what you need to delete it."""

        r = self.request(f"{repo}/manifests/{tag}", headers={"Accept": MANIFEST_ACCEPT})

        if r.status_code == 404:
            raise TagNotFoundError("Tag %s does not exist in %s of registry %s" %
                                   (tag, repo, self.registry), r.status_code, r.text)

        if not _success(r):
            raise ManifestFetchError("Fetching tag infos failed with status %s: %s" %
                                     (r.status_code, r.text), r.status_code, r.text)

        digest = r.headers.get('Docker-Content-Digest')
        if not digest:
            raise MissingDigestError("Tag digest header of the manifest was empty.",
                                     r.status_code, r.text)

        if self.verbose:
            print("-- %s:%s is %s" % (repo, tag, digest))

        return digest


    ## Delete functions

    def delete_manifest(self, repo, digest):
        """Delete the manifest for a given digest in a repo.  The API
        does not support deleting by repository:tag only by
        repository:digest, and all the tags pointing to the same
        manifest go with it."""

        if not self.do_delete:
            if self.verbose:
                print("-- (not really) Deleting manifest for %s@%s" % (repo, digest))
            return

        if self.verbose:
            print("-- Deleting manifest for %s@%s" % (repo, digest))

        r = self.request(f"{repo}/manifests/{digest}", method="DELETE")

        if r.status_code == 404:
            raise TagNotFoundError("Tag digest %s does not exist in %s of registry %s" %
                                   (digest, repo, self.registry), r.status_code, r.text)

        if not _success(r):
            raise TagDeletionError("Deleting tag failed with status %s: %s" %
                                   (r.status_code, r.text), r.status_code, r.text)

        if self.debug:
            print("--- Result: %s: %s" % (r.status_code, r.text.rstrip()))
