import json
import os
import sys

import marc21
from marc21 import ControlField, DataField, SubField

SAMPLE_PATH = 'sample.mrc'


def sample_records() -> list[list[marc21.Field]]:
    return [
        [
            ControlField(tag='001', text='123456'),
            DataField(tag='100', ind1='1', subfields=[SubField(code='a', data='Orwell, George')]),
            DataField(tag='245', ind1='1', ind2='4', subfields=[SubField(code='a', data='Nineteen Eighty-Four')]),
            DataField(tag='520', subfields=[SubField(
                code='a', data='Among the seminal texts of the 20th century, '
                               'Nineteen Eighty-Four is a rare work that grows frequent.')]),
            DataField(tag='650', ind2='0', subfields=[SubField(code='a', data='Totalitarianism'),
                                                      SubField(code='x', data='Fiction')]),
            DataField(tag='655', ind2='7', subfields=[SubField(code='a', data='Science fiction.')]),
        ],
        [
            ControlField(tag='001', text='789012'),
            DataField(tag='100', ind1='1', subfields=[SubField(code='a', data='Austen, Jane')]),
            DataField(tag='245', ind1='1', ind2='0', subfields=[SubField(code='a', data='Pride and Prejudice')]),
            DataField(tag='520', subfields=[SubField(
                code='a', data='Since its immediate success in 1813, '
                               'Pride and Prejudice has remained one of the most popular novels.')]),
            DataField(tag='650', ind2='0', subfields=[SubField(code='a', data='Social classes'),
                                                      SubField(code='x', data='Fiction')]),
        ],
    ]


def write_sample(path: str):
    data = b''.join(marc21.build_record(fields) for fields in sample_records())
    with open(path, 'wb') as fp:
        fp.write(data)


def dump(path: str) -> str:
    with open(path, 'rb') as fp:
        records = marc21.decode(fp.read())
    return json.dumps([r.model_dump() for r in records], ensure_ascii=False, indent=2)


def main():
    path = sys.argv[1] if len(sys.argv) > 1 else SAMPLE_PATH
    if not os.path.exists(path):
        write_sample(path)
    print(dump(path))


if __name__ == '__main__':
    main()
