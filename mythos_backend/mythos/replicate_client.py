import os, io, time, httpx, asyncio, logging
from PIL import Image

from .models import Genre
from .prompts import IMAGE_PROMPT_TEMPLATE
from .results import AssetFailed, AssetOk, AssetResult
from .settings import REPLICATE_POLL_INTERVAL_MS, REPLICATE_POLL_TIMEOUT_S, REPLICATE_MODEL_VERSION
from .utils import to_data_url

logger = logging.getLogger(__name__)

REPLICATE_API = "https://api.replicate.com/v1"

def _headers():
    token = os.getenv("REPLICATE_API_TOKEN", "")
    if not token:
        raise RuntimeError("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}"}

def _model_selector() -> str:
    # Prefer explicit version from env for stability; fall back to a public model alias (latest).
    return REPLICATE_MODEL_VERSION or "black-forest-labs/flux-schnell"

def _parse_selector(selector: str):
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    owner_name, _, _version_alias = selector.partition(":")
    if "/" in owner_name:
        owner, name = owner_name.split("/", 1)
        return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}

def build_image_prompt(prompt: str, genre: Genre) -> str:
    return IMAGE_PROMPT_TEMPLATE.format(genre=genre.value, prompt=prompt.strip())

async def create_and_wait_image(prompt: str) -> str:
    logger.info(f"Starting Replicate image generation for prompt: {prompt[:100]}...")

    async with httpx.AsyncClient(timeout=30) as client:
        selector = _model_selector()
        json_body = {"input": {"prompt": prompt, "num_outputs": 1, "aspect_ratio": "1:1"}}
        mode, data = _parse_selector(selector)
        if mode == "version":
            json_body["version"] = data["version"]
            url = f"{REPLICATE_API}/predictions"
        else:
            url = f"{REPLICATE_API}/models/{data['owner']}/{data['name']}/predictions"

        r = await client.post(url, headers={**_headers(), "Content-Type": "application/json"}, json=json_body)
        if r.status_code >= 400:
            logger.error(f"Replicate create failed {r.status_code}: {r.text}")
            raise RuntimeError(f"Replicate create failed {r.status_code}: {r.text}")
        pred_id = r.json()["id"]
        logger.info(f"Replicate prediction created with ID: {pred_id}")

        start = time.time()
        while True:
            s = await client.get(f"{REPLICATE_API}/predictions/{pred_id}", headers=_headers())
            if s.status_code >= 400:
                raise RuntimeError(f"Replicate status failed {s.status_code}: {s.text}")
            body = s.json()
            if not isinstance(body, dict):
                raise RuntimeError(f"Replicate status body is not an object: {body!r}")
            status = body.get("status")

            if status in ("succeeded", "failed", "canceled"):
                if status != "succeeded":
                    raise RuntimeError(f"Replicate failed: {status}. error={body.get('error')}")
                output = body.get("output")
                if isinstance(output, str) and output:
                    return output
                if isinstance(output, list) and output and isinstance(output[0], str):
                    return output[0]
                raise RuntimeError("Replicate succeeded but no output URL")
            if time.time() - start > REPLICATE_POLL_TIMEOUT_S:
                raise TimeoutError("Replicate polling timeout")
            await asyncio.sleep(REPLICATE_POLL_INTERVAL_MS / 1000.0)

def normalize_to_png(image_data: bytes) -> bytes:
    """Re-encode any format Pillow understands as an RGB PNG."""
    with Image.open(io.BytesIO(image_data)) as pil_img:
        if pil_img.mode in ("RGBA", "LA", "P"):
            pil_img = pil_img.convert("RGBA")
            # Flatten transparency onto white
            background = Image.new("RGB", pil_img.size, (255, 255, 255))
            background.paste(pil_img, mask=pil_img.split()[-1])
            pil_img = background
        elif pil_img.mode != "RGB":
            pil_img = pil_img.convert("RGB")
        png_buffer = io.BytesIO()
        pil_img.save(png_buffer, format="PNG")
        return png_buffer.getvalue()

async def fetch_image_as_data_url(url: str) -> str:
    async with httpx.AsyncClient(timeout=60) as client:
        img = await client.get(url)
        img.raise_for_status()
    return to_data_url(normalize_to_png(img.content))

async def request_image(prompt: str, genre: Genre) -> AssetResult:
    """Generate one page illustration. Never raises: failures come back as AssetFailed."""
    try:
        url = await create_and_wait_image(build_image_prompt(prompt, genre))
        return AssetOk(await fetch_image_as_data_url(url))
    except Exception as e:
        logger.warning(f"Visual generation failed: {e}")
        return AssetFailed(str(e) or type(e).__name__)
