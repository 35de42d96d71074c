"""Start a server to render Mapbox GL style map requests to images."""

import argparse

import uvicorn
from fastapi.middleware.cors import CORSMiddleware

from mbgl_renderer._version import __version__
from mbgl_renderer.logger import configure_logging, logger
from mbgl_renderer.render import get_engine
from mbgl_renderer.routers.render import create_app


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        description="Start a server to render Mapbox GL map requests to images."
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=8000,
        help="Server port (default: 8000)",
    )
    parser.add_argument(
        "-t",
        "--tiles",
        type=str,
        default=None,
        help="Directory of local mbtiles files. Styles referencing them are rejected; accepted for compatibility.",
    )
    parser.add_argument(
        "--engine",
        type=str,
        default=None,
        help="Rendering engine as 'module:attribute' (default: the MBGL_RENDERER_ENGINE setting)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable request logging"
    )
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)
    engine = get_engine(args.engine)
    app = create_app(tile_path=args.tiles, engine=engine, verbose=args.verbose)
    app.add_middleware(CORSMiddleware, allow_origins=["*"])

    logger.info(
        "mbgl-renderer server started",
        port=args.port,
        tile_path=args.tiles,
    )
    uvicorn.run(app, host="0.0.0.0", port=args.port, log_level="info" if args.verbose else "warning")


if __name__ == "__main__":
    main()
