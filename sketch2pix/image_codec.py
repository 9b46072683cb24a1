from __future__ import annotations

import base64
import io
from pathlib import Path
from typing import Union

import numpy as np
import torch
from PIL import Image

from sketch2pix.errors import ShapeMismatchError

ImageLike = Union[Image.Image, np.ndarray]

# floor(256 * c), not 255: matches the pixels the trained model was published with.
QUANT_SCALE = 256.0


def image_to_tensor(image: ImageLike, device: Union[str, torch.device] = "cpu") -> torch.Tensor:
    """RGB(A) raster -> (H, W, 3) float32 tensor in [0, 1]. Alpha is dropped."""
    if isinstance(image, Image.Image):
        arr = np.asarray(image.convert("RGB"), dtype=np.float32)
    else:
        arr = np.asarray(image)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ShapeMismatchError(f"Expected an (H, W, 3) or (H, W, 4) array, got shape {arr.shape}")
        if arr.dtype != np.uint8:
            raise TypeError(f"Expected an 8-bit (uint8) array, got dtype {arr.dtype}")
        arr = arr[:, :, :3].astype(np.float32)
    t = torch.from_numpy(np.ascontiguousarray(arr / 255.0, dtype=np.float32))
    return t.to(device=device)


def quantize(t: torch.Tensor) -> np.ndarray:
    """(H, W, 3) values in [0, 1] -> (H, W, 4) uint8 RGBA, `floor(256 * c)` saturated to 255."""
    if t.dim() != 3 or t.shape[2] != 3:
        raise ShapeMismatchError(f"Expected an (H, W, 3) tensor, got shape {tuple(t.shape)}")
    rgb = torch.floor(t.detach().to("cpu", dtype=torch.float32) * QUANT_SCALE).clamp_(0, 255)
    h, w = int(t.shape[0]), int(t.shape[1])
    out = np.full((h, w, 4), 255, dtype=np.uint8)
    out[:, :, :3] = rgb.numpy().astype(np.uint8)
    return out


def tensor_to_image(t: torch.Tensor) -> Image.Image:
    return Image.fromarray(quantize(t))


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(image: Image.Image) -> str:
    return "data:image/png;base64," + base64.b64encode(encode_png(image)).decode("ascii")


def load_image(path: Union[str, Path]) -> Image.Image:
    return Image.open(path).convert("RGB")


def save_image(image: Image.Image, path: Union[str, Path]) -> Path:
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    if out_path.suffix.lower() in {".jpg", ".jpeg"}:
        image = image.convert("RGB")
    image.save(out_path)
    return out_path
