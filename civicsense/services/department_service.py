"""
Department Service - Maps issue categories to responsible departments
"""
from types import MappingProxyType
from typing import Dict, Any, Optional, List

CATEGORY_TO_DEPARTMENT = MappingProxyType({
    "pothole": "roads",
    "road_damage": "roads",
    "garbage": "sanitation",
    "water_leakage": "water",
    "drainage": "water",
    "streetlight": "electricity",
    "illegal_parking": "general",
    "noise": "general",
    "air_pollution": "general",
    "others": "general",
})

DEPARTMENTS = MappingProxyType({
    "roads": MappingProxyType({
        "name": "Roads Department",
        "description": "Handles road maintenance, potholes, and road damage",
        "contact_email": "roads@civicsense.gov",
        "response_time_hours": 48,
    }),
    "sanitation": MappingProxyType({
        "name": "Sanitation Department",
        "description": "Handles garbage collection and waste management",
        "contact_email": "sanitation@civicsense.gov",
        "response_time_hours": 24,
    }),
    "water": MappingProxyType({
        "name": "Water Department",
        "description": "Handles water supply, leakages, and drainage issues",
        "contact_email": "water@civicsense.gov",
        "response_time_hours": 12,
    }),
    "electricity": MappingProxyType({
        "name": "Electricity Department",
        "description": "Handles streetlights and electrical infrastructure",
        "contact_email": "electricity@civicsense.gov",
        "response_time_hours": 24,
    }),
    "general": MappingProxyType({
        "name": "General Administration",
        "description": "Handles miscellaneous civic issues",
        "contact_email": "admin@civicsense.gov",
        "response_time_hours": 72,
    }),
})

SEVERITY_MULTIPLIER = MappingProxyType({
    "low": 1.5,
    "medium": 1.0,
    "high": 0.75,
    "critical": 0.5,
})


class DepartmentService:
    """Static department routing"""

    def department_for(self, category: Optional[str]) -> str:
        return CATEGORY_TO_DEPARTMENT.get(category, "general")

    def details(self, department: Optional[str]) -> Dict[str, Any]:
        info = DEPARTMENTS.get(department, DEPARTMENTS["general"])
        return {"id": department if department in DEPARTMENTS else "general", **info}

    def all_departments(self) -> List[Dict[str, Any]]:
        return [self.details(department) for department in DEPARTMENTS]

    def predicted_resolution_hours(self, category: Optional[str], severity: str) -> int:
        """Department response time scaled by severity"""
        base_hours = DEPARTMENTS[self.department_for(category)]["response_time_hours"]
        return round(base_hours * SEVERITY_MULTIPLIER.get(severity, 1.0))


# Singleton instance
department_service = DepartmentService()
