"""Tests for discharge email rendering."""

from vetdesk.services.email_templates import (
    DEFAULT_CLINIC_NAME,
    DEFAULT_PRIMARY_COLOR,
    create_clinic_branding,
    html_to_plain_text,
    render_discharge_email,
    strip_html,
)


class TestBranding:

    def test_defaults(self):
        branding = create_clinic_branding()
        assert branding.clinic_name == DEFAULT_CLINIC_NAME
        assert branding.primary_color == DEFAULT_PRIMARY_COLOR
        assert branding.logo_url is None

    def test_empty_strings_fall_back(self):
        branding = create_clinic_branding(clinic_name="", primary_color="", logo_url="")
        assert branding.clinic_name == DEFAULT_CLINIC_NAME
        assert branding.logo_url is None


class TestTextHelpers:

    def test_strip_html(self):
        assert strip_html("<p>Bella&nbsp;ate</p>\n<br><b>well</b>") == "Bella ate well"

    def test_html_to_plain_text_keeps_blocks(self):
        text = html_to_plain_text("<style>p{}</style><h2>Title</h2><p>One</p><ul><li>A</li><li>B</li></ul>")
        assert text == "Title\nOne\n\n- A\n- B"


class TestRenderDischargeEmail:

    def test_plain_summary(self):
        branding = create_clinic_branding(clinic_name="Happy Paws", clinic_phone="(213) 555-0100")
        email = render_discharge_email(
            "Bella had a good visit.\n\nGive food slowly.",
            patient_name="Bella",
            species="dog",
            breed="Labrador",
            branding=branding,
        )

        assert email["subject"] == "Discharge Instructions for Bella"
        assert "<p>Bella had a good visit.</p>" in email["html"]
        assert "<p>Give food slowly.</p>" in email["html"]
        assert "dog, Labrador" in email["html"]
        assert "Questions? Contact Happy Paws at (213) 555-0100." in email["text"]

    def test_structured_summary(self):
        structured = {
            "visitSummary": "Bella was treated for an upset stomach.",
            "medications": [{"name": "Metronidazole", "instructions": "Twice daily with food"}],
            "warningSigns": ["Blood in vomit"],
        }
        email = render_discharge_email(
            "ignored when structured content exists",
            patient_name="Bella",
            species=None,
            breed=None,
            branding=create_clinic_branding(primary_color="#0EA5E9"),
            structured_content=structured,
        )

        assert "background:#0EA5E9" in email["html"]
        assert "<strong>Metronidazole</strong>: Twice daily with food" in email["html"]
        assert "When to Call Us" in email["html"]
        assert "ignored when structured" not in email["html"]

    def test_clinic_text_is_escaped(self):
        branding = create_clinic_branding(clinic_name="Paws <script>alert(1)</script>")
        email = render_discharge_email("x", patient_name="Bella", species=None, breed=None, branding=branding)
        assert "<script>" not in email["html"]
        assert "&lt;script&gt;" in email["html"]
