import numpy as np
import pytest
import torch
from PIL import Image

from sketch2pix.errors import ShapeMismatchError
from sketch2pix.image_codec import (
    encode_png,
    image_to_tensor,
    load_image,
    quantize,
    save_image,
    tensor_to_image,
    to_data_url,
)


def test_quantize_uses_256_multiplier() -> None:
    t = torch.tensor([[[0.0, 0.25, 0.5]], [[0.7, 0.999, 1.0]]])
    out = quantize(t)
    assert out.shape == (2, 1, 4)
    assert out.dtype == np.uint8
    assert out[0, 0].tolist() == [0, 64, 128, 255]
    # 255 * 0.7 would give 178
    assert out[1, 0].tolist() == [179, 255, 255, 255]


def test_quantize_saturates_out_of_range() -> None:
    t = torch.tensor([[[-0.5, 1.5, 0.0]]])
    assert quantize(t)[0, 0].tolist() == [0, 255, 0, 255]


def test_quantize_rejects_wrong_shape() -> None:
    with pytest.raises(ShapeMismatchError):
        quantize(torch.zeros(4, 4))


def test_tensor_to_image_keeps_orientation() -> None:
    t = torch.zeros(2, 3, 3)
    t[0, 2] = torch.tensor([1.0, 0.0, 0.0])
    img = tensor_to_image(t)
    assert img.mode == "RGBA"
    assert img.size == (3, 2)
    assert img.getpixel((2, 0)) == (255, 0, 0, 255)
    assert img.getpixel((0, 1)) == (0, 0, 0, 255)


def test_image_to_tensor_from_pil() -> None:
    img = Image.new("RGB", (4, 2), (255, 0, 51))
    t = image_to_tensor(img)
    assert t.shape == (2, 4, 3)
    assert t.dtype == torch.float32
    assert torch.allclose(t[1, 3], torch.tensor([1.0, 0.0, 0.2]))


def test_image_to_tensor_drops_alpha() -> None:
    arr = np.zeros((2, 2, 4), dtype=np.uint8)
    arr[..., 1] = 255
    arr[..., 3] = 7
    t = image_to_tensor(arr)
    assert t.shape == (2, 2, 3)
    assert torch.all(t[..., 1] == 1.0)


def test_image_to_tensor_rejects_grayscale_array() -> None:
    with pytest.raises(ShapeMismatchError):
        image_to_tensor(np.zeros((4, 4), dtype=np.uint8))


@pytest.mark.parametrize("dtype", [np.float32, np.float64, np.uint16])
def test_image_to_tensor_rejects_non_8bit_array(dtype) -> None:
    with pytest.raises(TypeError, match="uint8"):
        image_to_tensor(np.full((2, 2, 3), 0.5, dtype=dtype))


def test_pixel_values_survive_codec() -> None:
    arr = np.arange(64 * 3, dtype=np.uint8).reshape(8, 8, 3)
    out = np.asarray(tensor_to_image(image_to_tensor(arr)))
    assert np.array_equal(out[..., :3], arr)


def test_png_encoding() -> None:
    img = tensor_to_image(torch.full((2, 2, 3), 0.5))
    assert encode_png(img).startswith(b"\x89PNG")
    assert to_data_url(img).startswith("data:image/png;base64,")


def test_save_image_creates_parents(tmp_path) -> None:
    img = tensor_to_image(torch.zeros(2, 2, 3))
    path = save_image(img, tmp_path / "out" / "result.jpg")
    assert path.exists()
    loaded = load_image(path)
    assert loaded.mode == "RGB"
    assert loaded.size == (2, 2)
