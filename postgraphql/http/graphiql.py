"""
GraphiQL page served on the explorer route.
"""

from __future__ import annotations

import json

GRAPHIQL_VERSION = "3.7.1"

_PAGE = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>GraphiQL</title>
    <style>body {{ margin: 0; height: 100vh; }} #graphiql {{ height: 100vh; }}</style>
    <link rel="stylesheet" href="https://unpkg.com/graphiql@{version}/graphiql.min.css" />
  </head>
  <body>
    <div id="graphiql">Loading...</div>
    <script crossorigin src="https://unpkg.com/react@18/umd/react.production.min.js"></script>
    <script crossorigin src="https://unpkg.com/react-dom@18/umd/react-dom.production.min.js"></script>
    <script crossorigin src="https://unpkg.com/graphiql@{version}/graphiql.min.js"></script>
    <script>
      const fetcher = GraphiQL.createFetcher({{ url: {endpoint} }});
      ReactDOM.createRoot(document.getElementById("graphiql")).render(
        React.createElement(GraphiQL, {{ fetcher }})
      );
    </script>
  </body>
</html>
"""


def render_graphiql(graphql_route: str) -> str:
    # json.dumps gives a safely quoted JS string literal.
    endpoint = json.dumps(graphql_route).replace("</", "<\\/")
    return _PAGE.format(version=GRAPHIQL_VERSION, endpoint=endpoint)
