import re
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ValidationError

from .schemas import ProductFormData, field_errors

IMAGE_URL_FIELDS = ("imageUrl1", "imageUrl2", "imageUrl3", "imageUrl4")
MAX_PRODUCT_IMAGES = len(IMAGE_URL_FIELDS)
IMAGE_HINT = "product image"

_SLUG_DISALLOWED = re.compile(r"[^a-z0-9\s-]")
_SLUG_WHITESPACE = re.compile(r"\s+")
_SLUG_HYPHENS = re.compile(r"-+")


def slugify_product_name(value: Optional[str]) -> str:
    slug = str(value or "").lower().strip()
    slug = slug.replace("&", "and")
    slug = _SLUG_DISALLOWED.sub("", slug)
    slug = _SLUG_WHITESPACE.sub("-", slug)
    return _SLUG_HYPHENS.sub("-", slug)


def default_form_values() -> Dict:
    return {
        "name": "",
        "slug": "",
        "description": "",
        "category": "",
        "style": "",
        "price": 0,
        "originalPrice": None,
        "imageUrl1": "",
        "imageUrl2": "",
        "imageUrl3": "",
        "imageUrl4": "",
        "sizes": [],
        "availableColors": [],
        "isFeatured": False,
    }


def hydrate_form_values(product_document: Dict) -> Dict:
    values = default_form_values()
    for field in ("name", "slug", "description", "category"):
        values[field] = product_document.get(field) or ""
    values["style"] = product_document.get("style") or ""
    values["price"] = product_document.get("price", 0) or 0
    values["originalPrice"] = product_document.get("originalPrice")

    images = product_document.get("images")
    if not isinstance(images, list):
        images = []
    for field, image in zip(IMAGE_URL_FIELDS, images[:MAX_PRODUCT_IMAGES]):
        if isinstance(image, dict):
            values[field] = image.get("url") or ""

    values["sizes"] = list(product_document.get("sizes") or [])
    values["availableColors"] = [
        {"name": color.get("name", ""), "hex": color.get("hex", "")}
        for color in product_document.get("availableColors") or []
        if isinstance(color, dict)
    ]
    values["isFeatured"] = bool(product_document.get("isFeatured") or False)
    return values


def build_product_images(form_data: ProductFormData) -> List[Dict[str, str]]:
    urls = [getattr(form_data, field) for field in IMAGE_URL_FIELDS]
    return [
        {"url": url, "alt": form_data.name, "hint": IMAGE_HINT}
        for url in urls
        if url
    ]


def first_empty_image_field(values: Dict) -> Optional[str]:
    for field in IMAGE_URL_FIELDS:
        if not values.get(field):
            return field
    return None


def build_product_document(form_data: ProductFormData) -> Dict:
    return {
        "name": form_data.name,
        "slug": form_data.slug,
        "description": form_data.description,
        "category": form_data.category,
        "style": form_data.style or None,
        "price": form_data.price,
        "originalPrice": form_data.originalPrice or None,
        "images": build_product_images(form_data),
        "sizes": list(form_data.sizes),
        "availableColors": [color.model_dump() for color in form_data.availableColors],
        "isFeatured": form_data.isFeatured,
    }


class ProductFormController:
    """Create/edit state for a single product form.

    While creating, every name change re-derives the slug. While editing an
    existing product the stored slug stays as it was unless the slug field
    itself is changed.
    """

    def __init__(self, store):
        self.store = store
        self.values: Dict = default_form_values()
        self.errors: Dict[str, str] = {}
        self.editing_product: Optional[Dict] = None
        self.is_open = False

    @property
    def is_editing(self) -> bool:
        return self.editing_product is not None

    def open_new(self):
        self.editing_product = None
        self.reset()
        self.is_open = True

    def open_edit(self, product_document: Dict):
        self.editing_product = product_document
        self.values = hydrate_form_values(product_document)
        self.errors = {}
        self.is_open = True

    def close(self):
        self.is_open = False
        self.editing_product = None
        self.reset()

    def reset(self):
        self.values = default_form_values()
        self.errors = {}

    def set_value(self, field: str, value):
        if field not in self.values:
            raise KeyError(f"Unknown product form field: {field}")
        self.values[field] = value
        if field == "name" and not self.is_editing and value:
            self.values["slug"] = slugify_product_name(value)

    def update(self, payload: Dict):
        # Name goes first so an explicit slug in the same payload wins.
        if "name" in payload:
            self.set_value("name", payload["name"])
        for field, value in payload.items():
            if field == "name" or field not in self.values:
                continue
            if field == "slug" and not value and not self.is_editing:
                continue
            self.set_value(field, value)

    def assign_uploaded_url(self, url: str) -> Optional[str]:
        field = first_empty_image_field(self.values)
        if field:
            self.set_value(field, url)
            self.validate()
        return field

    def validate(self) -> Optional[ProductFormData]:
        try:
            form_data = ProductFormData.model_validate(self.values)
        except ValidationError as exc:
            self.errors = field_errors(exc)
            return None
        self.errors = {}
        return form_data

    def submit(self) -> Optional[str]:
        """Validate and write the product; returns the product id when written."""
        form_data = self.validate()
        if form_data is None:
            return None

        document = build_product_document(form_data)
        now = datetime.utcnow()
        document["updatedAt"] = now

        if self.editing_product is not None:
            product_id = str(self.editing_product.get("_id") or self.editing_product.get("id"))
            written = self.store.update_document("products", product_id, document)
            result = product_id if written else None
        else:
            document["createdAt"] = now
            result = self.store.add_document("products", document)

        self.close()
        return result
