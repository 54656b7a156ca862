"""Database functions for examinations.

Examinations are created once by a staff member and never modified.
"""

import asyncio
from typing import List, Optional

from supabase import Client

from marksheet_dispatch.errors import IllegalTransition, TransientError
from marksheet_dispatch.models.actor import Actor
from marksheet_dispatch.models.examination import Examination, ExaminationCreate

TABLE = "examinations"


async def create_examination(
    client: Client,
    data: ExaminationCreate,
    staff: Actor,
) -> Examination:
    """Create an examination owned by ``staff``.

    Department and staff name are taken from the staff profile, not the request.

    Raises:
        IllegalTransition: If ``staff`` is not the staff member named in ``data``
        TransientError: If database insertion fails
    """
    if staff.role != "staff" or staff.id != data.staff_id:
        raise IllegalTransition("Examinations can only be created by their owning staff member")

    record = {
        "examinationName": data.examination_name,
        "year": data.year,
        "semester": data.semester,
        "academicYear": data.academic_year,
        "examinationMonth": data.examination_month,
        "examinationYear": data.examination_year,
        "department": staff.department,
        "staffId": staff.id,
        "staffName": staff.name,
        "status": "active",
    }

    try:
        response = await asyncio.to_thread(lambda: client.table(TABLE).insert(record).execute())
        if not response.data or len(response.data) == 0:
            raise Exception("Insert returned no data")
    except Exception as e:
        raise TransientError(f"Failed to create examination: {str(e)}") from e

    return Examination.from_record(response.data[0])


async def list_examinations(
    client: Client,
    staff_id: Optional[str] = None,
    department: Optional[str] = None,
) -> List[Examination]:
    """List examinations, newest first, optionally by staff and/or department.

    Raises:
        TransientError: If the database query fails
    """
    try:
        query = client.table(TABLE).select("*")
        if staff_id:
            query = query.eq("staffId", staff_id)
        if department:
            query = query.eq("department", department)
        response = await asyncio.to_thread(lambda: query.order("createdAt", desc=True).execute())
    except Exception as e:
        raise TransientError(f"Failed to list examinations: {str(e)}") from e

    return [Examination.from_record(row) for row in response.data or []]
