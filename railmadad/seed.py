# Seed data: demo complaints across every area and the main statuses
#
# Usage:  python -m railmadad.seed            (merges into the configured store)
#         python -m railmadad.seed --reset    (replaces the whole store with the seed set)
#
# Coverage matrix:
#   Areas    : TRAIN (3), STATION (2), SUGGESTIONS (1), ENQUIRY (1), RAIL_ANUBHAV (1)
#   Statuses : REGISTERED, IN_PROGRESS (analysed), WITHDRAWN, RESOLVED
#   Sources  : FORM, CHATBOT

import sys
from typing import List

from .enrichment import apply_analysis
from .identifiers import new_id
from .lifecycle import build_complaint
from .models import AnalysisOutcome, ComplaintBase, ComplaintSource, Status
from .store import ComplaintRepository, build_backend

# ---------------------------------------------------------------------------
# Complaint records
# ---------------------------------------------------------------------------
COMPLAINTS = [
    # 1: analysed train complaint, routed to Electrical
    {"fields": {"complaint_area": "TRAIN", "complaint_type": "Coach - Maintenance",
                "complaint_sub_type": "AC/Heating", "pnr": "4521789630", "train_number": "12951",
                "coach_number": "B4", "seat_number": "32", "journey_date": "2026-10-12",
                "description": "AC in coach B4 has not been working since Vadodara. Passengers are sweating."},
     "owner": "passenger1@example.com", "source": "FORM",
     "analysis": {"category": "Electrical", "urgency_score": 5,
                  "summary": "AC failure in coach B4 of train 12951.",
                  "keywords": ["AC", "coach B4", "12951"], "suggested_department": "Electrical"}},

    # 2: fresh train complaint, unauthorized passengers
    {"fields": {"complaint_area": "TRAIN", "complaint_type": "Security",
                "complaint_sub_type": "Unauthorized Passengers", "train_number": "12627",
                "coach_number": "S6", "unauthorized_people_count": 8,
                "description": "Eight people without reservation are occupying berths in S6."},
     "owner": "passenger1@example.com", "source": "CHATBOT"},

    # 3: withdrawn by the passenger
    {"fields": {"complaint_area": "TRAIN", "complaint_type": "Catering",
                "complaint_sub_type": "Food Quality", "train_number": "22691",
                "description": "Dinner served was stale."},
     "owner": "passenger2@example.com", "source": "FORM", "status": "WITHDRAWN"},

    # 4: station cleanliness, analysed
    {"fields": {"complaint_area": "STATION", "complaint_type": "Cleanliness",
                "complaint_sub_type": "Platform", "station_code": "NDLS", "platform_number": "4",
                "description": "Platform 4 is littered and the dustbins are overflowing."},
     "owner": "passenger2@example.com", "source": "FORM",
     "analysis": {"category": "Cleaning", "urgency_score": 2,
                  "summary": "Litter and overflowing bins on platform 4 at NDLS.",
                  "keywords": ["platform 4", "NDLS", "cleanliness"], "suggested_department": "Cleaning"}},

    # 5: station, resolved by an official
    {"fields": {"complaint_area": "STATION", "complaint_type": "Passenger Amenities",
                "complaint_sub_type": "Drinking Water", "station_code": "BCT",
                "description": "Water coolers on platform 1 are dry."},
     "owner": "passenger3@example.com", "source": "FORM", "status": "RESOLVED"},

    # 6: suggestion
    {"fields": {"complaint_area": "SUGGESTIONS", "complaint_type": "Suggestion",
                "complaint_sub_type": "Station Facilities", "station_code": "PUNE",
                "description": "Please add more charging points in the waiting hall."},
     "owner": "passenger1@example.com", "source": "FORM"},

    # 7: enquiry
    {"fields": {"complaint_area": "ENQUIRY", "complaint_type": "Enquiry",
                "complaint_sub_type": "Refund", "pnr": "8765432109",
                "description": "When will the refund for my cancelled ticket be credited?"},
     "owner": "passenger3@example.com", "source": "CHATBOT"},

    # 8: Rail Anubhav experience
    {"fields": {"complaint_area": "RAIL_ANUBHAV", "complaint_type": "Experience",
                "complaint_sub_type": "Staff Behaviour", "train_number": "12002", "rating": 5,
                "description": "The TTE helped my elderly mother find her seat. Great service."},
     "owner": "passenger2@example.com", "source": "FORM"},
]

# ---------------------------------------------------------------------------
# Import function
# ---------------------------------------------------------------------------
def build_seed_complaints() -> List[ComplaintBase]:
    complaints = []
    for entry in COMPLAINTS:
        fields = entry["fields"]
        complaint = build_complaint(
            fields, complaint_id=new_id(fields["complaint_area"]), owner_email=entry["owner"],
            source=ComplaintSource(entry["source"]))
        if entry.get("analysis"):
            complaint = apply_analysis(complaint, AnalysisOutcome(**entry["analysis"]))
        if entry.get("status"):
            complaint = complaint.model_copy(update={"status": Status(entry["status"])})
        complaints.append(complaint)
    return complaints


def import_complaints(repository: ComplaintRepository, reset: bool = False) -> List[ComplaintBase]:
    """Write the seed complaints into ``repository``. Returns what was written.

    With ``reset`` every existing record is discarded first.
    """
    print("\n  Importing seed complaints...")
    complaints = build_seed_complaints()
    if reset:
        print("  Resetting complaint store")
        repository.save_all(complaints)
    else:
        repository.merge_write(complaints)
    for c in complaints:
        print(f"    {c.id:18s}  {c.complaint_area:13s}  {c.status.value}")
    print(f"  => {len(complaints)} complaints written")
    return complaints


if __name__ == "__main__":
    import_complaints(ComplaintRepository(build_backend()), reset="--reset" in sys.argv[1:])
