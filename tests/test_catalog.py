import pytest
from bson import ObjectId

from catalog_admin.catalog import (
    ProductFormController,
    build_product_images,
    first_empty_image_field,
    hydrate_form_values,
    slugify_product_name,
)
from catalog_admin.schemas import ProductFormData

from .conftest import RecordingStore

URL_A = "https://cdn.example.com/a.png"
URL_B = "https://cdn.example.com/b.png"
URL_C = "https://cdn.example.com/c.png"
URL_D = "https://cdn.example.com/d.png"


def valid_values(**overrides):
    values = {
        "name": "Linen Shirt",
        "description": "Breathable summer shirt",
        "category": "Men",
        "price": "2500",
        "imageUrl1": URL_A,
    }
    values.update(overrides)
    return values


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Men & Women's Bags!", "men-and-womens-bags"),
        ("  Summer   Dress  ", "summer-dress"),
        ("Tote -- Bag", "tote-bag"),
        ("Rock & Roll Tee 2024", "rock-and-roll-tee-2024"),
        ("Café Crème", "caf-crme"),
        ("", ""),
    ],
)
def test_slugify_product_name(name, expected):
    assert slugify_product_name(name) == expected


def test_slugify_is_deterministic():
    assert slugify_product_name("Weekend Duffel") == slugify_product_name("Weekend Duffel")


def test_slug_follows_every_name_change_while_creating():
    controller = ProductFormController(RecordingStore())
    controller.open_new()

    for partial in ("L", "Li", "Linen", "Linen Shirt"):
        controller.set_value("name", partial)
        assert controller.values["slug"] == slugify_product_name(partial)


def test_slug_is_frozen_while_editing():
    controller = ProductFormController(RecordingStore())
    controller.open_edit({"_id": ObjectId(), "name": "Linen Shirt", "slug": "linen-shirt"})

    controller.set_value("name", "Linen Shirt (Relaxed Fit)")

    assert controller.values["slug"] == "linen-shirt"


def test_explicit_slug_wins_over_derived_slug():
    controller = ProductFormController(RecordingStore())
    controller.open_new()

    controller.update({"slug": "custom-slug", "name": "Linen Shirt"})

    assert controller.values["slug"] == "custom-slug"


def test_blank_slug_keeps_derived_slug_while_creating():
    controller = ProductFormController(RecordingStore())
    controller.open_new()

    controller.update({"name": "Linen Shirt", "slug": ""})

    assert controller.values["slug"] == "linen-shirt"


def test_hydrate_form_values_unpacks_images_and_defaults():
    product = {
        "name": "Tote",
        "slug": "tote",
        "description": "Canvas tote",
        "category": "Bags",
        "style": None,
        "price": 1200,
        "images": [{"url": URL_A}, {"url": URL_B}],
    }

    values = hydrate_form_values(product)

    assert values["imageUrl1"] == URL_A
    assert values["imageUrl2"] == URL_B
    assert values["imageUrl3"] == ""
    assert values["imageUrl4"] == ""
    assert values["style"] == ""
    assert values["originalPrice"] is None
    assert values["sizes"] == []
    assert values["availableColors"] == []
    assert values["isFeatured"] is False


def test_build_product_images_skips_empty_fields_and_keeps_order():
    form_data = ProductFormData.model_validate(
        valid_values(imageUrl1="", imageUrl2=URL_B, imageUrl3="", imageUrl4=URL_D)
    )

    images = build_product_images(form_data)

    assert [image["url"] for image in images] == [URL_B, URL_D]
    assert all(image["alt"] == "Linen Shirt" for image in images)
    assert all(image["hint"] == "product image" for image in images)


def test_build_product_images_with_four_urls():
    form_data = ProductFormData.model_validate(
        valid_values(imageUrl1=URL_A, imageUrl2=URL_B, imageUrl3=URL_C, imageUrl4=URL_D)
    )

    images = build_product_images(form_data)

    assert [image["url"] for image in images] == [URL_A, URL_B, URL_C, URL_D]


def test_first_empty_image_field():
    assert first_empty_image_field({"imageUrl1": URL_A, "imageUrl2": ""}) == "imageUrl2"
    full = {"imageUrl1": URL_A, "imageUrl2": URL_B, "imageUrl3": URL_C, "imageUrl4": URL_D}
    assert first_empty_image_field(full) is None


def test_submit_creates_product_with_both_timestamps():
    store = RecordingStore()
    controller = ProductFormController(store)
    controller.open_new()
    controller.update(valid_values(style="", originalPrice=""))

    product_id = controller.submit()

    assert product_id == "products-1"
    collection, document = store.added[0]
    assert collection == "products"
    assert document["slug"] == "linen-shirt"
    assert document["price"] == 2500.0
    assert document["style"] is None
    assert document["originalPrice"] is None
    assert document["images"] == [{"url": URL_A, "alt": "Linen Shirt", "hint": "product image"}]
    assert document["isFeatured"] is False
    assert "createdAt" in document
    assert document["updatedAt"] == document["createdAt"]
    assert "imageUrl1" not in document
    assert controller.is_open is False
    assert controller.editing_product is None


def test_submit_updates_product_with_update_timestamp_only():
    store = RecordingStore()
    product_id = ObjectId()
    controller = ProductFormController(store)
    controller.open_edit(
        {
            "_id": product_id,
            "name": "Linen Shirt",
            "slug": "linen-shirt",
            "description": "Breathable summer shirt",
            "category": "Men",
            "style": "Casual",
            "price": 2500,
            "originalPrice": 3000,
            "images": [{"url": URL_A, "alt": "Linen Shirt", "hint": "product image"}],
        }
    )
    controller.set_value("price", 2200)

    assert controller.submit() == str(product_id)

    collection, document_id, changes = store.updated[0]
    assert (collection, document_id) == ("products", str(product_id))
    assert changes["price"] == 2200.0
    assert changes["style"] == "Casual"
    assert changes["originalPrice"] == 3000.0
    assert "updatedAt" in changes
    assert "createdAt" not in changes
    assert store.added == []
    assert controller.is_open is False
    assert controller.editing_product is None


def test_validation_errors_are_field_scoped_and_block_submit():
    store = RecordingStore()
    controller = ProductFormController(store)
    controller.open_new()
    controller.update(
        valid_values(name="", description="", price="-5", imageUrl2="not a url")
    )

    assert controller.submit() is None

    assert controller.errors["name"] == "Name is required"
    assert controller.errors["slug"] == "Slug is required"
    assert controller.errors["description"] == "Description is required"
    assert controller.errors["price"] == "Price must be positive"
    assert controller.errors["imageUrl2"] == "Must be a valid URL"
    assert "category" not in controller.errors
    assert store.added == []
    assert controller.is_open is True


def test_sizes_and_colors_are_restricted_to_the_fixed_options():
    controller = ProductFormController(RecordingStore())
    controller.open_new()
    controller.update(
        valid_values(sizes=["M", "XXXL"], availableColors=[{"name": "Neon", "hex": "#123456"}])
    )

    assert controller.validate() is None
    assert "sizes" in controller.errors
    assert controller.errors["availableColors"] == "Color must be chosen from the palette"


def test_assign_uploaded_url_fills_first_empty_field():
    controller = ProductFormController(RecordingStore())
    controller.open_new()
    controller.update({"imageUrl1": URL_A, "imageUrl3": URL_C})

    assert controller.assign_uploaded_url(URL_B) == "imageUrl2"
    assert controller.values["imageUrl2"] == URL_B


def test_assign_uploaded_url_leaves_full_form_untouched():
    controller = ProductFormController(RecordingStore())
    controller.open_new()
    full = {"imageUrl1": URL_A, "imageUrl2": URL_B, "imageUrl3": URL_C, "imageUrl4": URL_D}
    controller.update(full)

    assert controller.assign_uploaded_url("https://cdn.example.com/e.png") is None
    assert {field: controller.values[field] for field in full} == full


def test_set_value_rejects_unknown_fields():
    controller = ProductFormController(RecordingStore())
    with pytest.raises(KeyError):
        controller.set_value("stock", 4)


def test_sizes_are_deduplicated_in_order():
    form_data = ProductFormData.model_validate(valid_values(sizes=["S", "M", "S", "L", "M"]))

    assert form_data.sizes == ["S", "M", "L"]
