#! /usr/bin/env python3
import argparse
import json
import os
import random
import re
import signal
import sys
import time
import zipfile

from field_extractors import (
    FULL_DATE,
    YEAR_MONTH,
    YEAR_ONLY,
    cell_to_text,
    is_empty,
    to_boolean,
    to_epoch_millis,
    to_identifier_string,
    to_partial_date,
    to_string_list,
)
from row_normalizer import KEY_MODES, normalize_key, normalize_row
from sheet_reader import parse_rows

SCHEMAS = ("client", "profile")
ALIAS_TAGS = ("literal", "indexed")
ALIAS_LITERAL = "Also Known As"

PERSON = "PERSON"
ORGANISATION = "ORGANISATION"
PERSON_TYPES = ("PERSON", "INDIVIDUAL")
ORGANISATION_TYPES = ("COMPANY", "ORGANISATION", "ORGANIZATION", "ENTITY")

MAX_LISTS = 4
MAX_EXAMPLES = 5

GARBAGE_VALUES = ("NULL", "NUL", "N/A", "~")

# --identity number columns in output order, each (candidate columns, type)
COMMON_ID_COLUMNS = [
    (("National Tax No.", "Tax No.", "taxNo"), "tax_no"),
]
COMPANY_ID_COLUMNS = [
    (("Duns Number", "dunsNo"), "duns"),
    (("Legal Entity Identifier (LEI)", "lei"), "lei"),
]
PERSON_ID_COLUMNS = [
    (("National ID", "nationalId"), "national_id"),
    (("Driving Licence No.", "Driving License No."), "driving_licence"),
    (("Social Security No.", "ssn"), "ssn"),
    (("Passport No.", "passportNo"), "passport_no"),
]

# --address attributes in output order, each (attribute, candidate columns)
ADDRESS_COLUMNS = [
    ("line", ("Address Line", "line")),
    ("line1", ("Address Line 1", "line1")),
    ("line2", ("Address Line 2", "line2")),
    ("line3", ("Address Line 3", "line3")),
    ("line4", ("Address Line 4", "line4")),
    ("poBox", ("PO Box", "poBox")),
    ("city", ("city",)),
    ("province", ("province", "state")),
    ("postCode", ("postCode", "postcode", "zip")),
    ("country", ("country",)),
    ("countryCode", ("countryCode",)),
]

# --profile layout code and array attributes
PROFILE_COMMON_ARRAYS = [
    "countryOfAffiliationCode",
    "formerlySanctionedRegionCode",
    "sanctionedRegionCode",
    "enhancedRiskCountryCode",
    "residentOfCode",
    "citizenshipCode",
    "sources",
]
PROFILE_COMPANY_ARRAYS = ["countryOfRegistrationCode", "companyUrls"]

ALIAS_COLUMN = re.compile(r"^alias(?:es)?[\s_-]*(\d*)$", re.IGNORECASE)
FLOAT_SUFFIX = re.compile(r"\.0$")


# =========================
class mapper:

    # ----------------------------------------
    def __init__(self, schema="client", alias_tag="literal", key_mode="strict"):

        if schema not in SCHEMAS:
            raise ValueError(f"unknown schema {schema!r}, expected one of {SCHEMAS}")
        if alias_tag not in ALIAS_TAGS:
            raise ValueError(f"unknown alias tag {alias_tag!r}, expected one of {ALIAS_TAGS}")
        if key_mode not in KEY_MODES:
            raise ValueError(f"unknown key mode {key_mode!r}, expected one of {KEY_MODES}")

        self.schema = schema
        self.alias_tag = alias_tag
        self.key_mode = key_mode
        self.key_cache = {}

        self.load_reference_data()
        self.stat_pack = {}

    # ----------------------------------------
    def map(self, raw_data, input_row_num=None):

        # --one key policy for every lookup in the row
        row = normalize_row(raw_data, self.key_mode, on_collision=self.header_collision)

        # Clean the raw data values using the clean_value method
        for attribute in row:
            row[attribute] = self.clean_value(row[attribute])

        row_id = input_row_num if input_row_num is not None else "?"

        if self.schema == "profile":
            json_data = self.map_profile(row, row_id)
        else:
            json_data = self.map_client(row, row_id)

        # --remove empty attributes and capture the stats
        json_data = self.remove_empty_tags(json_data)
        self.capture_mapped_stats(json_data)

        return json_data

    # ----------------------------------------
    def map_client(self, row, row_id):
        json_data = {"objectType": "client"}

        entity_type = self.get_text(row, "entityType", "type")
        group = self.entity_group(entity_type)

        self.set_value(json_data, "entityType", entity_type)
        self.set_value(json_data, "clientId", self.get_text(row, "clientId", "profileId"))
        self.set_value(json_data, "status", self.get_text(row, "status", "activeStatus"))

        # Set primary names, organisations carry a single company name
        try:
            if group == ORGANISATION:
                self.set_value(
                    json_data, "companyName", self.get_text(row, "companyName", "name")
                )
            else:
                self.set_value(json_data, "name", self.get_text(row, "name"))
                self.set_value(json_data, "forename", self.get_text(row, "forename", "firstName"))
                self.set_value(
                    json_data, "middlename", self.get_text(row, "middlename", "middleName")
                )
                self.set_value(json_data, "surname", self.get_text(row, "surname", "lastName"))

            self.set_value(json_data, "titles", self.get_list(row, "titles", "title"))
            self.set_value(json_data, "suffixes", self.get_list(row, "suffixes", "suffix"))
        except Exception as ex:
            self.section_error(row_id, "name", ex)

        if group == PERSON:
            try:
                gender = self.get_text(row, "gender")
                self.set_value(json_data, "gender", gender.upper() if gender else None)
                self.set_value(
                    json_data,
                    "dateOfBirth",
                    self.format_date(self.get_raw(row, "dateOfBirth", "Date of Birth")),
                )
                self.set_value(
                    json_data,
                    "birthPlaceCountryCode",
                    self.get_code(row, "birthPlaceCountryCode"),
                )
                self.set_value(
                    json_data,
                    "deceasedOn",
                    self.format_date(self.get_raw(row, "deceasedOn", "dateOfDeath")),
                )
                self.set_value(json_data, "occupation", self.get_text(row, "occupation"))
                self.set_value(
                    json_data,
                    "domicileCodes",
                    self.get_code_list(row, "domicileCodes", "domicileCode"),
                )
                self.set_value(
                    json_data,
                    "nationalityCodes",
                    self.get_code_list(row, "nationalityCodes", "nationalityCode"),
                )
            except Exception as ex:
                self.section_error(row_id, "person", ex)

        elif group == ORGANISATION:
            try:
                self.set_value(
                    json_data,
                    "incorporationCountryCode",
                    self.get_code(row, "incorporationCountryCode"),
                )
                self.set_value(
                    json_data,
                    "dateOfIncorporation",
                    self.format_date(self.get_raw(row, "dateOfIncorporation")),
                )
            except Exception as ex:
                self.section_error(row_id, "organisation", ex)

        # Review dates are epoch milliseconds, lastReviewed only matters when assessed
        try:
            assessment = self.get_raw(row, "assessmentRequired")
            if not is_empty(assessment):
                required = to_boolean(assessment)
                json_data["assessmentRequired"] = required
                if required:
                    self.set_value(
                        json_data,
                        "lastReviewed",
                        self.format_timestamp(self.get_raw(row, "lastReviewed")),
                    )
            self.set_value(
                json_data,
                "periodicReviewStartDate",
                self.format_timestamp(self.get_raw(row, "periodicReviewStartDate")),
            )
            self.set_value(
                json_data, "periodicReviewPeriod", self.get_text(row, "periodicReviewPeriod")
            )
        except Exception as ex:
            self.section_error(row_id, "review", ex)

        self.map_shared_sections(json_data, row, row_id, group)

        # Security tags are only sent when the feature is switched on
        try:
            if to_boolean(self.get_raw(row, "securityEnabled")):
                security = {}
                for tag in ("orTags1", "orTags2", "orTags3"):
                    self.set_value(security, tag, self.get_text(row, tag))
                self.set_value(json_data, "security", security)
        except Exception as ex:
            self.section_error(row_id, "security", ex)

        return json_data

    # ----------------------------------------
    def map_profile(self, row, row_id):
        json_data = {"objectType": "profile"}

        entity_type = self.get_text(row, "type", "entityType")
        group = self.entity_group(entity_type)

        self.set_value(json_data, "type", entity_type)
        self.set_value(json_data, "profileId", self.get_text(row, "profileId", "clientId"))
        for attribute in ("action", "activeStatus", "name", "suffix"):
            self.set_value(json_data, attribute, self.get_text(row, attribute))

        if group == PERSON:
            gender = self.get_text(row, "gender")
            self.set_value(json_data, "gender", gender.upper() if gender else None)

        self.set_value(json_data, "profileNotes", self.get_text(row, "profileNotes"))
        self.set_value(
            json_data, "lastModifiedDate", self.format_date(self.get_raw(row, "lastModifiedDate"))
        )

        # Code and url attributes are always arrays in this layout
        try:
            if group == ORGANISATION:
                for attribute in PROFILE_COMPANY_ARRAYS:
                    self.set_value(json_data, attribute, self.get_list(row, attribute))
                self.set_value(
                    json_data,
                    "dateOfRegistrationArray",
                    self.get_date_list(row, "dateOfRegistrationArray"),
                )
            if group == PERSON:
                self.set_value(
                    json_data, "dateOfBirthArray", self.get_date_list(row, "dateOfBirthArray")
                )
            for attribute in PROFILE_COMMON_ARRAYS:
                self.set_value(json_data, attribute, self.get_list(row, attribute))
        except Exception as ex:
            self.section_error(row_id, "arrays", ex)

        self.map_shared_sections(json_data, row, row_id, group)

        return json_data

    # ----------------------------------------
    def map_shared_sections(self, json_data, row, row_id, group):

        try:
            self.set_value(json_data, "identityNumbers", self.build_identity_numbers(row, group))
        except Exception as ex:
            self.section_error(row_id, "identity number", ex)

        try:
            self.set_value(json_data, "addresses", self.build_addresses(row))
        except Exception as ex:
            self.section_error(row_id, "address", ex)

        try:
            self.set_value(json_data, "aliases", self.build_aliases(row, group))
        except Exception as ex:
            self.section_error(row_id, "alias", ex)

        try:
            self.set_value(json_data, "lists", self.build_lists(row))
        except Exception as ex:
            self.section_error(row_id, "list", ex)

    # ----------------------------------------
    def build_identity_numbers(self, row, group):

        id_columns = list(COMMON_ID_COLUMNS)
        if group == ORGANISATION:
            id_columns += COMPANY_ID_COLUMNS
        elif group == PERSON:
            id_columns += PERSON_ID_COLUMNS

        identity_numbers = []
        for columns, id_type in id_columns:
            value = self.get_text(row, *columns)
            if value:
                identity_numbers.append({"type": id_type, "value": value})
        return identity_numbers

    # ----------------------------------------
    def build_addresses(self, row):

        address = {}
        for attribute, columns in ADDRESS_COLUMNS:
            value = self.get_text(row, *columns)
            if not value:
                continue
            if attribute == "postCode":
                # --numeric postcode columns come through as floats
                value = FLOAT_SUFFIX.sub("", value)
            elif attribute == "countryCode":
                value = value[:2].upper()
            self.set_value(address, attribute, value)

        # Append only if at least one field is present
        return [address] if address else []

    # ----------------------------------------
    def build_aliases(self, row, group):

        if self.schema == "client":
            name_key = "companyName" if group == ORGANISATION else "name"
            type_key = "nameType"
        else:
            name_key = "name"
            type_key = "type"

        aliases = []
        for key, value in row.items():
            if not ALIAS_COLUMN.match(key):
                continue
            alias_name = to_identifier_string(value)
            if not alias_name:
                continue
            if self.alias_tag == "indexed":
                alias_type = f"AKA{len(aliases) + 1}"
            else:
                alias_type = ALIAS_LITERAL
            aliases.append({name_key: alias_name, type_key: alias_type})
        return aliases

    # ----------------------------------------
    def build_lists(self, row):

        lists = []
        for i in range(1, MAX_LISTS + 1):
            list_name = self.get_text(row, f"List {i}")
            if not list_name:
                continue

            active = cell_to_text(self.get_raw(row, f"Active List {i}")).lower() == "true"
            entry = {
                "id": list_name,
                "name": list_name,
                "active": active,
                "listActive": active,
                "hierarchy": [{"id": list_name, "name": list_name}],
            }
            self.set_value(entry, "since", self.format_date(self.get_raw(row, f"Since List {i}")))
            self.set_value(entry, "to", self.format_date(self.get_raw(row, f"To List {i}")))
            lists.append(entry)
        return lists

    # ----------------------------------------
    def entity_group(self, entity_type):
        if not entity_type:
            return None
        entity_type = entity_type.upper()
        if entity_type in PERSON_TYPES:
            return PERSON
        if entity_type in ORGANISATION_TYPES:
            return ORGANISATION
        self.update_stat("!INFO", "UNKNOWN_ENTITY_TYPE", entity_type)
        return None

    # ----------------------------------------
    def key(self, column):
        if column not in self.key_cache:
            self.key_cache[column] = normalize_key(column, self.key_mode)
        return self.key_cache[column]

    # ----------------------------------------
    def get_raw(self, row, *columns):
        # --first candidate column holding a value wins
        for column in columns:
            value = row.get(self.key(column))
            if not is_empty(value):
                return value
        return None

    # ----------------------------------------
    def get_text(self, row, *columns):
        return to_identifier_string(self.get_raw(row, *columns)) or None

    # ----------------------------------------
    def get_list(self, row, *columns):
        return to_string_list(self.get_raw(row, *columns))

    # ----------------------------------------
    def get_code(self, row, *columns):
        value = self.get_text(row, *columns)
        return value.upper() if value else None

    # ----------------------------------------
    def get_code_list(self, row, *columns):
        return [x.upper() for x in self.get_list(row, *columns)]

    # ----------------------------------------
    def get_date_list(self, row, *columns):
        raw_value = self.get_raw(row, *columns)
        if is_empty(raw_value):
            return []
        if not isinstance(raw_value, (str, list, tuple)):
            raw_value = [raw_value]
        return [self.format_date(x) for x in to_string_list(raw_value)]

    # ----------------------------------------
    def set_value(self, target, key, value):
        if not is_empty(value):
            target[key] = value

    # ----------------------------------------
    def load_reference_data(self):
        # --placeholder markers exporters write into blank cells
        self.garbage_values = set(GARBAGE_VALUES)

    # -----------------------------------
    def clean_value(self, raw_value):
        if isinstance(raw_value, list):
            # clean each element in the list
            return [self.clean_value(x) for x in raw_value]
        if not isinstance(raw_value, str):
            return raw_value
        new_value = " ".join(raw_value.strip().split())
        if new_value.upper() in self.garbage_values:
            return None
        return new_value

    # ----------------------------------------
    def format_date(self, raw_date):
        formatted = to_partial_date(raw_date)
        if formatted and not (
            YEAR_ONLY.match(formatted) or YEAR_MONTH.match(formatted) or FULL_DATE.match(formatted)
        ):
            self.update_stat("!INFO", "BAD_DATE", formatted)
        return formatted

    # ----------------------------------------
    def format_timestamp(self, raw_date):
        millis = to_epoch_millis(raw_date)
        if millis is None and not is_empty(raw_date):
            self.update_stat("!INFO", "BAD_DATE", cell_to_text(raw_date))
        return millis

    # ----------------------------------------
    def remove_empty_tags(self, d):
        if isinstance(d, dict):
            for k, v in list(d.items()):
                self.remove_empty_tags(v)
                if is_empty(v):
                    del d[k]
        if isinstance(d, list):
            for v in d:
                self.remove_empty_tags(v)
            d[:] = [v for v in d if not is_empty(v)]
        return d

    # ----------------------------------------
    def header_collision(self, key, earlier_header, later_header):
        self.update_stat("!INFO", "HEADER_COLLISION", f"{earlier_header!r} -> {later_header!r}")

    # ----------------------------------------
    def section_error(self, row_id, section, ex):
        print(f"id {row_id} {section} parse error {ex}")
        self.update_stat("!ERROR", section, str(row_id))

    # ----------------------------------------
    def update_stat(self, cat1, cat2, example=None):
        stat = self.stat_pack.setdefault(cat1, {}).setdefault(cat2, {"count": 0})
        stat["count"] += 1
        if not example:
            return

        # --keep the first two examples, rotate the rest through the last three slots
        examples = stat.setdefault("examples", [])
        if example in examples:
            return
        if len(examples) < MAX_EXAMPLES:
            examples.append(example)
        else:
            examples[random.randint(2, MAX_EXAMPLES - 1)] = example

    # ----------------------------------------
    def capture_mapped_stats(self, json_data):

        object_type = json_data.get("objectType", "UNKNOWN")

        for key1 in json_data:
            if type(json_data[key1]) != list:
                self.update_stat(object_type, key1, json.dumps(json_data[key1]))
            else:
                for subrecord in json_data[key1]:
                    if not isinstance(subrecord, dict):
                        self.update_stat(object_type, key1, json.dumps(subrecord))
                        continue
                    for key2 in subrecord:
                        self.update_stat(
                            object_type, f"{key1}.{key2}", json.dumps(subrecord[key2])
                        )


# ----------------------------------------
def is_empty_record(json_data):
    return all(key == "objectType" for key in json_data)


# ----------------------------------------
def transform(rows, mapper_obj=None, drop_empty=False):
    """Map rows to records one at a time, in input order."""
    if mapper_obj is None:
        mapper_obj = mapper()

    for input_row_num, row in enumerate(rows, 1):
        json_data = mapper_obj.map(row, input_row_num)
        if drop_empty and is_empty_record(json_data):
            continue
        yield json_data


# ----------------------------------------
def to_json_line(json_data):
    return json.dumps(json_data, ensure_ascii=False, separators=(",", ":"))


# ----------------------------------------
def to_jsonl(records):
    return "".join(to_json_line(json_data) + "\n" for json_data in records)


# ----------------------------------------
def signal_handler(signal, frame):
    print("USER INTERUPT! Shutting down ... (please wait)")
    global shut_down
    shut_down = True
    return


shut_down = False


# ----------------------------------------
def write_records(rows, mapper_obj, output_file, keep_empty=False):
    input_row_count = 0
    output_row_count = 0

    with open(output_file, "w", encoding="utf-8") as output_file_handle:
        for input_row in rows:
            input_row_count += 1

            json_data = mapper_obj.map(input_row, input_row_count)
            if keep_empty or not is_empty_record(json_data):
                output_file_handle.write(to_json_line(json_data) + "\n")
                output_row_count += 1

            if input_row_count % 1000 == 0:
                print(f"{input_row_count} rows processed, {output_row_count} rows written")
            if shut_down:
                break

    return input_row_count, output_row_count


# ----------------------------------------
def main(argv=None):
    global shut_down

    proc_start_time = time.time()
    shut_down = False

    parser = argparse.ArgumentParser()
    parser.add_argument(
        "-i", "--input_file", dest="input_file", help="the name of the input xls/xlsx file"
    )
    parser.add_argument(
        "-o", "--output_file", dest="output_file", help="the name of the output jsonl file"
    )
    parser.add_argument(
        "-l",
        "--log_file",
        dest="log_file",
        help="optional name of the statistics log file",
    )
    parser.add_argument(
        "-s", "--sheet", dest="sheet", default="0", help="worksheet name or index, default 0"
    )
    parser.add_argument(
        "--schema", dest="schema", choices=SCHEMAS, default="client", help="output layout"
    )
    parser.add_argument(
        "--alias_tag",
        dest="alias_tag",
        choices=ALIAS_TAGS,
        default="literal",
        help="literal 'Also Known As' or indexed AKA1, AKA2 ...",
    )
    parser.add_argument(
        "--key_mode",
        dest="key_mode",
        choices=KEY_MODES,
        default="strict",
        help="header matching: strict ignores case and punctuation, loose only trims",
    )
    parser.add_argument(
        "--keep_empty",
        dest="keep_empty",
        action="store_true",
        default=False,
        help="write rows that map to an empty record",
    )
    args = parser.parse_args(argv)

    if not args.input_file or not os.path.exists(args.input_file):
        print("\nPlease supply a valid input file name on the command line\n")
        sys.exit(1)
    if not args.output_file:
        print("\nPlease supply a valid output file name on the command line\n")
        sys.exit(1)

    sheet = int(args.sheet) if args.sheet.isdigit() else args.sheet
    try:
        rows = parse_rows(args.input_file, sheet_name=sheet)
    except (OSError, ValueError, zipfile.BadZipFile) as ex:
        print(f"\nCould not read {args.input_file}: {ex}\n")
        sys.exit(1)

    if not rows:
        print("File is empty. No rows to convert.")

    mapper_obj = mapper(schema=args.schema, alias_tag=args.alias_tag, key_mode=args.key_mode)

    # --ctrl-c only stops this run, the caller's handler comes back afterwards
    previous_handler = signal.signal(signal.SIGINT, signal_handler)
    try:
        input_row_count, output_row_count = write_records(
            rows, mapper_obj, args.output_file, args.keep_empty
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if rows and not output_row_count:
        print("No valid rows found for conversion.")

    elapsed_mins = round((time.time() - proc_start_time) / 60, 1)
    run_status = (
        "completed in" if not shut_down else "aborted after"
    ) + f" {elapsed_mins} minutes"
    print(
        f"{input_row_count} rows processed, {output_row_count} rows written, {run_status}\n"
    )

    if args.log_file:
        with open(args.log_file, "w", encoding="utf-8") as log_file_handle:
            json.dump(mapper_obj.stat_pack, log_file_handle, indent=4, sort_keys=True)
        print(f"Mapping stats written to {args.log_file}\n")

    return 0


# ----------------------------------------
if __name__ == "__main__":
    sys.exit(main())
