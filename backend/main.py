"""
linemeasure FastAPI backend

Exposes the latest published frame result to a UI and accepts selection
commands back.

Endpoints:
    GET  /api/health            Liveness and published version
    POST /api/frames            Upload relative depth (optionally metric depth),
                                lines and intrinsics, then process and publish
    GET  /api/result            Latest published result and selection
    GET  /api/result/depth.png  False-colour calibrated depth with line overlay
    POST /api/select/index      Select a line by index
    POST /api/select/point      Select the line nearest to a display point
    POST /api/select/clear      Clear the selection
"""

import io
import json
import threading
from typing import Optional

import numpy as np
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from linemeasure.config import load_config
from linemeasure.io.load_inputs import parse_lines
from linemeasure.io.save_artifacts import encode_png
from linemeasure.models import CameraIntrinsics, DepthField
from linemeasure.pipeline import process_frame
from linemeasure.state import NoResultError, ResultStore
from linemeasure.viz.depth_view import colorize_depth, draw_lines, get_gradient

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="linemeasure", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

config = load_config(None)
store = ResultStore(config.selection.threshold)

_frame_lock = threading.Lock()
_frame_counter = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class IndexSelection(BaseModel):
    index: int


class PointSelection(BaseModel):
    x: float
    y: float
    display_width: float
    display_height: float


def _next_frame_index():
    global _frame_counter
    with _frame_lock:
        _frame_counter += 1
        return _frame_counter


async def _read_depth(upload: UploadFile) -> DepthField:
    """Decode an uploaded .npy depth array."""
    content = await upload.read()
    try:
        values = np.load(io.BytesIO(content), allow_pickle=False)
        return DepthField(values=values)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid depth upload {upload.filename}: {exc}")


def _current_state():
    state = store.snapshot()
    if state is None:
        raise HTTPException(status_code=404, detail="No frame result published yet")
    return state


def _state_payload(state):
    return {
        "version": state.version,
        "result": state.result.summary(),
        "selection": state.selection.model_dump(mode="json"),
    }


# ---------------------------------------------------------------------------
# API Endpoints
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health():
    return JSONResponse({"status": "ok", "version": store.version})


@app.post("/api/frames")
async def submit_frame(
    relative: UploadFile = File(...),
    absolute: Optional[UploadFile] = File(None),
    lines: str = Form(...),
    intrinsics: str = Form(...),
    image_width: Optional[int] = Form(None),
    image_height: Optional[int] = Form(None),
):
    """
    Process one frame and publish it.

    ``lines`` is a JSON list of [x1, y1, x2, y2] rows or line objects.
    ``intrinsics`` is a JSON object with fx, fy, cx, cy, width, height.
    """
    relative_field = await _read_depth(relative)
    absolute_field = await _read_depth(absolute) if absolute is not None else None

    try:
        line_list = parse_lines(json.loads(lines))
        intr = CameraIntrinsics.model_validate(json.loads(intrinsics))
    except (json.JSONDecodeError, ValueError, KeyError, TypeError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid frame metadata: {exc}")

    image_size = (image_width or intr.width, image_height or intr.height)

    try:
        result = process_frame(
            relative_field,
            absolute_field,
            line_list,
            intr,
            image_size,
            config,
            frame_index=_next_frame_index(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    published = store.publish(result)
    return JSONResponse({"published": published, "result": result.summary()})


@app.get("/api/result")
async def get_result():
    return JSONResponse(_state_payload(_current_state()))


@app.get("/api/result/depth.png")
async def get_depth_png():
    state = _current_state()
    result = state.result
    image = colorize_depth(result.depth, get_gradient(config.visualization.gradient))
    image = draw_lines(
        image,
        [seg.source for seg in result.lines],
        selected_index=state.selection.selected_index,
        scale=(result.depth.width / result.image_width, result.depth.height / result.image_height),
    )
    return Response(content=encode_png(image), media_type="image/png")


@app.post("/api/select/index")
async def select_index(body: IndexSelection):
    try:
        selection = store.select_index(body.index)
    except NoResultError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return JSONResponse({"selection": selection.model_dump(mode="json")})


@app.post("/api/select/point")
async def select_point(body: PointSelection):
    try:
        selection = store.select_near_point(
            (body.x, body.y), (body.display_width, body.display_height),
        )
    except NoResultError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if selection is None:
        return JSONResponse({"selected": False, "selection": _current_state().selection.model_dump(mode="json")})
    return JSONResponse({"selected": True, "selection": selection.model_dump(mode="json")})


@app.post("/api/select/clear")
async def clear_selection():
    try:
        selection = store.clear_selection()
    except NoResultError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return JSONResponse({"selection": selection.model_dump(mode="json")})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
    )
