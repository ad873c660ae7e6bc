#!/usr/bin/env python3
"""
RoboSketch CLI — generate robot projects from the terminal.

Usage:
  python cli.py generate "line-following robot that avoids obstacles" --platform Arduino
  python cli.py generate "desk plant watering bot" --platform "Raspberry Pi" --zip plant.zip
  python cli.py generate "rover from my sketch" --platform MicroBit --image sketch.png --json
  python cli.py obj "two-wheeled balancing robot" -o balancer.obj
  python cli.py serve                      # Start web server
"""
import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

PLATFORMS = ["Raspberry Pi", "Arduino", "MicroBit"]


def _load_image(path: str):
    from robosketch.types import EncodedImage
    media_type = mimetypes.guess_type(path)[0] or "image/png"
    if not media_type.startswith("image/"):
        raise SystemExit(f"Not an image file: {path}")
    return EncodedImage.from_bytes(Path(path).read_bytes(), media_type)


def cmd_generate(args):
    """Run the full pipeline."""
    from robosketch.api.server import create_orchestrator
    from robosketch.config import CONFIG
    from robosketch.errors import PipelineError
    from robosketch.packager import build_archive
    from robosketch.types import Platform, ProjectRequest
    from robosketch.validators import validate_request

    ok, errors = validate_request(args.description, args.platform,
                                  CONFIG.description_min_chars, CONFIG.description_max_chars)
    if not ok:
        raise SystemExit("; ".join(errors))

    request = ProjectRequest(
        description=args.description.strip(),
        platform=Platform(args.platform),
        image=_load_image(args.image) if args.image else None,
    )
    orch = create_orchestrator()
    if not args.json:
        orch.on_status = lambda msg: print(msg, file=sys.stderr)

    try:
        result = asyncio.run(orch.run(request))
    except PipelineError as e:
        print(f"\n❌ Generation failed: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        images = result.images
        print(f"\n{'='*50}")
        print(f"Platform: {result.platform.value}")
        print(f"Status:   {result.status}")
        print(f"Parts:    {len(result.bill_of_materials)}")
        print(f"Cost:     ${result.total_cost_usd:,.2f} USD")
        print(f"Code:     {result.code.filename} ({len(result.code.source.splitlines())} lines)")
        print(f"Images:   concept {'✓' if images.concept_image else '✗'}, "
              f"circuit {'✓' if images.circuit_diagram else '✗'}")
        if images.model_3d:
            print(f"3D model: {images.model_3d_filename}")
        print(f"\n{result.project_description}")
        if result.warnings:
            print(f"\nWarnings: {', '.join(result.warnings)}")

    if args.output:
        Path(args.output).write_text(json.dumps(result.to_dict(), indent=2))
        print(f"\nSaved to {args.output}", file=sys.stderr)
    if args.zip:
        Path(args.zip).write_bytes(asyncio.run(build_archive(result, log=orch.log)))
        print(f"Archive written to {args.zip}", file=sys.stderr)


def cmd_obj(args):
    """Generate a standalone OBJ model."""
    from robosketch.agents.orchestrator import AgentMessage
    from robosketch.agents.modeler.obj_agent import OBJModelAgent
    from robosketch.errors import PipelineError

    msg = AgentMessage("cli", "modeler", "generate_obj", {"description": args.description})
    try:
        content, filename = asyncio.run(OBJModelAgent().handle(msg))
    except PipelineError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)
    out = Path(args.output or filename)
    out.write_text(content)
    print(f"Wrote {out} ({sum(1 for line in content.splitlines() if line.startswith('v '))} vertices)")


def cmd_serve(args):
    """Start the web server."""
    import uvicorn
    from robosketch.config import CONFIG
    host = args.host or CONFIG.host
    port = args.port or CONFIG.port
    print(f"Starting server on {host}:{port}")
    uvicorn.run("robosketch.api.server:app", host=host, port=port, reload=args.reload)


def main():
    parser = argparse.ArgumentParser(
        description="RoboSketch — robot idea to buildable project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    # generate
    p_gen = sub.add_parser("generate", help="Run the full pipeline")
    p_gen.add_argument("description", help="What the robot should do")
    p_gen.add_argument("--platform", choices=PLATFORMS, required=True)
    p_gen.add_argument("--image", help="Optional sketch (png/jpg)")
    p_gen.add_argument("--json", action="store_true", help="Output JSON")
    p_gen.add_argument("-o", "--output", help="Save result JSON to file")
    p_gen.add_argument("--zip", help="Write the project archive to this path")

    # obj
    p_obj = sub.add_parser("obj", help="Generate an OBJ 3D model only")
    p_obj.add_argument("description", help="What the robot looks like")
    p_obj.add_argument("-o", "--output", help="Output .obj path")

    # serve
    p_serve = sub.add_parser("serve", help="Start web server")
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.add_argument("--reload", action="store_true")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    {"generate": cmd_generate, "obj": cmd_obj, "serve": cmd_serve}[args.command](args)


if __name__ == "__main__":
    main()
