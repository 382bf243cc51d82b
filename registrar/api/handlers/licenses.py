from __future__ import annotations

from registrar.api.schemas import LicenseTemplateResponse, LicenseTermsModel, ListLicenseTemplatesResponse
from registrar.domain.licenses import list_license_templates


async def list_license_templates_handler() -> ListLicenseTemplatesResponse:
    return ListLicenseTemplatesResponse(
        items=[
            LicenseTemplateResponse(
                template_id=template.template_id,
                name=template.name,
                description=template.description,
                terms=LicenseTermsModel(**template.terms.to_json()),
            )
            for template in list_license_templates()
        ]
    )
