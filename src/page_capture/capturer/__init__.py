"""Web page capture core.

Fetches a page and its sub-resources once per capture session and packages
them as a single document, a zip archive, a timestamped archive or a folder.

Sub-modules:
- ``config``          : constants (reserved names, compression rules, URNs)
- ``models``          : pydantic parameter and result models
- ``filenames``       : filename sanitising and per-session allocation
- ``access``          : fetch deduplication by access token
- ``http_fetcher``    : httpx transport and response header parsing
- ``data_uri``        : ``data:`` URI codec
- ``rewriters``       : payload rewrite handlers
- ``archive``         : deterministic zip builder
- ``documents``       : generated redirect, bookmark and manifest documents
- ``downloads``       : download coordinator and backend interface
- ``local_downloads`` : download backend writing to a local directory
- ``packager``        : archive strategy packaging
- ``session_store``   : capture session registry
- ``agent``           : page agent interface and pass-through agent
- ``orchestrator``    : ``Capturer``, the public capture operations
- ``router``          : FastAPI router (``/capturer/``)
"""
