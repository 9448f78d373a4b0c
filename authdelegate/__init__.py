"""
Dispatcher for delegated authentication requests.

The auth delegate is an ASGI application that sits between NGINX and one or
more authentication services.

Upon request to a protected endpoint, NGINX issues a sub-request (via the
`ngx_http_auth_request_module`) to the auth delegate including any cookies or
auth headers. The auth delegate does not authenticate anything itself. It
picks a single upstream authentication service based on the presence of a
configured header or cookie on the request, forwards the request there, and
relays the upstream's response (in particular its 2xx, 401 or 403 status)
back to NGINX.

Upstreams are tried in the order in which they are configured. The first
upstream whose header or cookie is present on the request wins. At most one
upstream may omit both, in which case it is the default and must be listed
last. Requests matching no upstream are rejected with 401 (Unauthorized).

See :mod:`authdelegate.options` for the configuration format and
:mod:`authdelegate.dispatch` for the dispatch rules.
"""
