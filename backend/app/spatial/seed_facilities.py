"""
Seed facility catalogue for the in-memory directory.

Public hospitals in Mexico City and Cuernavaca with their CLUES codes as
ids. Used when ``PERSISTENCE_BACKEND=memory`` and by the test-suite.
"""

from __future__ import annotations

from typing import List

from backend.app.spatial.hospital_matcher import Facility

SEED_FACILITIES: List[Facility] = [
    # ── CDMX ──
    Facility(
        id="DFSSA000015",
        name="Hospital General de Mexico Dr. Eduardo Liceaga",
        latitude=19.4117, longitude=-99.1525,
        address="Dr. Balmis 148, Doctores",
        phone="55 2789 2000",
        emergency_phone="55 2789 2000 ext. 1101",
        specialties=(
            "Urgencias", "Medicina Interna", "Cardiologia", "Neurologia",
            "Traumatologia", "Oncologia", "Nefrologia", "Cirugia General", "UCI",
        ),
        has_emergency=True, has_icu=True, has_trauma=True,
    ),
    Facility(
        id="DFSSA003932",
        name="Instituto Nacional de Enfermedades Respiratorias",
        latitude=19.2925, longitude=-99.1560,
        address="Calz. de Tlalpan 4502, Belisario Dominguez Secc. 16",
        phone="55 5487 1700",
        emergency_phone="55 5487 1700 ext. 5145",
        specialties=("Neumologia", "Alergologia", "Medicina Interna", "Urgencias", "UCI"),
        has_emergency=True, has_icu=True,
    ),
    Facility(
        id="DFSSA004002",
        name="Instituto Nacional de Cardiologia Ignacio Chavez",
        latitude=19.2893, longitude=-99.1543,
        address="Juan Badiano 1, Belisario Dominguez Secc. 16",
        phone="55 5573 2911",
        specialties=("Cardiologia", "Cirugia Cardiovascular", "Urgencias", "UCI"),
        has_emergency=True, has_icu=True,
    ),
    Facility(
        id="DFIMS000231",
        name="IMSS Hospital de Especialidades Centro Medico Nacional Siglo XXI",
        latitude=19.4064, longitude=-99.1547,
        address="Av. Cuauhtemoc 330, Doctores",
        phone="55 5627 6900",
        specialties=("Oncologia", "Nefrologia", "Endocrinologia", "Neurocirugia", "Urgencias"),
        has_emergency=True, has_icu=True,
    ),
    # ── Morelos ──
    Facility(
        id="MSSA000665",
        name='Hospital General de Cuernavaca "Dr. José G. Parres"',
        latitude=18.9186, longitude=-99.2342,
        address="Av. Domingo Diez s/n, Lomas de la Selva",
        phone="777 311 2288",
        emergency_phone="777 311 2288",
        specialties=(
            "Urgencias", "Medicina Interna", "Cirugia General", "Pediatria",
            "Ginecologia", "Traumatologia",
        ),
        has_emergency=True, has_icu=True, has_trauma=True,
    ),
    Facility(
        id="MSPRA00001",
        name="Hospital Center Vista Hermosa",
        latitude=18.9322, longitude=-99.2234,
        address="Rio Panuco 100, Vista Hermosa",
        phone="777 315 1293",
        emergency_phone="777 315 1293",
        specialties=("Urgencias", "Cardiologia", "Neurologia", "Cirugia General", "UCI"),
        has_emergency=True, has_icu=True, has_trauma=True,
    ),
]
