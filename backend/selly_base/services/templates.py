"""Import templates: the canonical column set of every importable entity type.

The same column definitions drive the downloadable CSV/XLSX templates, row
validation (required fields are looked up by label, then by field) and the
mapping of uploaded rows onto domain table columns.
"""

from __future__ import annotations

import enum
import io
from dataclasses import dataclass

import pandas as pd
from openpyxl.comments import Comment
from openpyxl.utils import get_column_letter

from selly_base.models.import_job import EntityType


class TemplateFormat(str, enum.Enum):
    CSV = "csv"
    XLSX = "xlsx"


@dataclass(frozen=True)
class TemplateColumn:
    field: str
    label: str
    required: bool
    example: str
    description: str | None = None


TEMPLATES: dict[EntityType, tuple[TemplateColumn, ...]] = {
    EntityType.COMPANIES: (
        TemplateColumn("name_en", "Company Name (English)", True, "ABC Company Ltd.", "Official company name in English"),
        TemplateColumn("name_th", "Company Name (Thai)", False, "บริษัท เอบีซี จำกัด", "Company name in Thai"),
        TemplateColumn("primary_registration_no", "Registration Number", False, "0105558012345", "Official company registration number"),
        TemplateColumn("registration_country_code", "Country Code", False, "TH", "ISO country code (e.g., TH, US, SG)"),
        TemplateColumn("address_line1", "Address Line 1", False, "123 Main Street", "Primary address line"),
        TemplateColumn("address_line2", "Address Line 2", False, "Building A, Floor 5", "Secondary address line"),
        TemplateColumn("postal_code", "Postal Code", False, "10110", "Postal/ZIP code"),
        TemplateColumn("primary_email", "Email", False, "contact@abccompany.com", "Primary contact email"),
        TemplateColumn("primary_phone", "Phone", False, "+66-2-123-4567", "Primary contact phone number"),
        TemplateColumn("website_url", "Website", False, "https://www.abccompany.com", "Company website URL"),
        TemplateColumn("linkedin_url", "LinkedIn URL", False, "https://linkedin.com/company/abc-company", "LinkedIn profile URL"),
        TemplateColumn("business_description", "Business Description", False, "Leading provider of technology solutions", "Brief description of business activities"),
        TemplateColumn("employee_count_estimate", "Employee Count", False, "500", "Estimated number of employees"),
        TemplateColumn("company_size", "Company Size", False, "Medium", "Size category (Small, Medium, Large, Enterprise)"),
        TemplateColumn("annual_revenue_estimate", "Annual Revenue", False, "50000000", "Estimated annual revenue"),
        TemplateColumn("currency_code", "Currency", False, "THB", "Currency code (THB, USD, etc.)"),
        TemplateColumn("is_shared_data", "Shared Data", False, "false", 'Set to "true" for platform-level shared data (platform admins only)'),
    ),
    EntityType.CONTACTS: (
        TemplateColumn("first_name", "First Name", True, "John", "Contact first name"),
        TemplateColumn("last_name", "Last Name", True, "Doe", "Contact last name"),
        TemplateColumn("email", "Email", True, "john.doe@example.com", "Contact email address"),
        TemplateColumn("phone", "Phone", False, "+66-81-234-5678", "Contact phone number"),
        TemplateColumn("job_title", "Job Title", False, "Sales Manager", "Contact job title"),
        TemplateColumn("company_name", "Company Name", False, "ABC Company Ltd.", "Associated company name"),
    ),
    EntityType.ACTIVITIES: (
        TemplateColumn("company_name", "Company Name", True, "ABC Company Ltd.", "Company associated with activity"),
        TemplateColumn("activity_type", "Activity Type", True, "Meeting", "Type of activity (Call, Email, Meeting, etc.)"),
        TemplateColumn("subject", "Subject", True, "Q1 Sales Review", "Activity subject/title"),
        TemplateColumn("description", "Description", False, "Discussed quarterly performance and targets", "Detailed activity description"),
        TemplateColumn("activity_date", "Date", True, "2025-01-15", "Activity date (YYYY-MM-DD)"),
    ),
}

INSTRUCTION_LINES = [
    "Import Instructions",
    None,
    "1. Fill in the data in the template sheet",
    "2. Required fields must have values",
    "3. Follow the format shown in the example row",
    "4. Do not modify the header row",
    "5. Save and upload the file",
    None,
    "Column Descriptions:",
    None,
]


def get_column_mapping(entity_type: EntityType | str) -> list[TemplateColumn]:
    """Return the ordered columns for an entity type; ValueError for unknown types."""
    return list(TEMPLATES[EntityType(entity_type)])


def get_template_filename(entity_type: EntityType | str, fmt: TemplateFormat | str) -> str:
    return f"{EntityType(entity_type).value}_import_template.{TemplateFormat(fmt).value}"


def generate_template(entity_type: EntityType | str, fmt: TemplateFormat | str) -> bytes:
    entity_type = EntityType(entity_type)
    columns = get_column_mapping(entity_type)
    if TemplateFormat(fmt) is TemplateFormat.CSV:
        return _csv_template(columns)
    return _xlsx_template(entity_type, columns)


def _example_frame(columns: list[TemplateColumn]) -> pd.DataFrame:
    return pd.DataFrame([[c.example for c in columns]], columns=[c.label for c in columns])


def _csv_template(columns: list[TemplateColumn]) -> bytes:
    return _example_frame(columns).to_csv(index=False, lineterminator="\n").encode("utf-8")


def _xlsx_template(entity_type: EntityType, columns: list[TemplateColumn]) -> bytes:
    instructions = [[line] for line in INSTRUCTION_LINES] + [
        [c.label, "Required" if c.required else "Optional", c.description or ""]
        for c in columns
    ]

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        _example_frame(columns).to_excel(writer, sheet_name=entity_type.value, index=False)
        pd.DataFrame(instructions).to_excel(
            writer, sheet_name="Instructions", index=False, header=False
        )

        sheet = writer.sheets[entity_type.value]
        for idx, column in enumerate(columns, start=1):
            sheet.column_dimensions[get_column_letter(idx)].width = 20
            if column.description:
                status = "Required" if column.required else "Optional"
                sheet.cell(row=1, column=idx).comment = Comment(
                    f"{column.description} ({status})", "System"
                )

        instructions_sheet = writer.sheets["Instructions"]
        for letter, width in zip("ABC", (30, 15, 50)):
            instructions_sheet.column_dimensions[letter].width = width

    return buffer.getvalue()
