"""Server-rendered pages for the meetings front end.

- served by the FastAPI app, no client-side framework
- plain HTML forms + redirects
- the session lives in the auth_token / user cookies
"""
