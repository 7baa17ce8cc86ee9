import json

from crashscope.report.vulnerability import VulnClass

class CheckReport:
    """ The final result of one checking run. """

    def __init__(self, op_list : list, vulnerabilities : list, inconclusive : list,
                 stats : dict, notes : list, complete : bool = True):
        self.op_list = op_list
        self.vulnerabilities = vulnerabilities
        # a list of EvalResult that gave no verdict
        self.inconclusive = inconclusive
        self.stats = stats
        self.notes = notes
        self.complete = complete

    def dynamic(self) -> list:
        return [v for v in self.vulnerabilities if v.vuln_class == VulnClass.Dynamic]

    def static(self) -> list:
        return [v for v in self.vulnerabilities if v.vuln_class == VulnClass.Static]

    def is_empty(self) -> bool:
        return len(self.vulnerabilities) == 0 and len(self.inconclusive) == 0

    def to_dict(self) -> dict:
        return {
            'complete': self.complete,
            'stats': dict(self.stats),
            'notes': list(self.notes),
            'vulnerabilities': [v.to_dict() for v in self.vulnerabilities],
            'inconclusive': [{'image': r.image.to_dict(), 'reason': r.reason_str()}
                             for r in self.inconclusive],
            'operations': [op.to_dict() for op in self.op_list],
        }

    def __op_lines(self, start_seq : int, end_seq : int, limit : int = 8) -> list:
        seqs = list(range(start_seq, end_seq + 1))
        if len(seqs) > limit:
            seqs = seqs[:limit // 2] + [None] + seqs[-(limit // 2):]
        lines = []
        for seq in seqs:
            if seq is None:
                lines.append('        ...')
            elif 0 <= seq < len(self.op_list):
                lines.append('        %s' % (str(self.op_list[seq])))
        return lines

    def to_text(self) -> str:
        lines = []
        lines.append('crash consistency report%s' % ('' if self.complete else ' (incomplete, deadline or image limit reached)'))
        lines.append('operations: %d, %s' % (len(self.op_list),
                     ', '.join('%s: %s' % (k, v) for k, v in sorted(self.stats.items()))))
        for note in self.notes:
            lines.append('note: %s' % (note))

        if not self.vulnerabilities:
            lines.append('no vulnerability found')
        for vuln_class in [VulnClass.Dynamic, VulnClass.Static]:
            vulns = [v for v in self.vulnerabilities if v.vuln_class == vuln_class]
            if not vulns:
                continue
            lines.append('')
            lines.append('%s vulnerabilities (%d):' % (vuln_class.value, len(vulns)))
            for i, vuln in enumerate(vulns):
                lines.append('  (%d) %s' % (i + 1, str(vuln)))
                if vuln.image_ids:
                    lines.append('      images: %s' % (str(list(vuln.image_ids[:16]))))
                lines += self.__op_lines(vuln.start_seq, vuln.end_seq)

        if self.inconclusive:
            lines.append('')
            lines.append('inconclusive (%d):' % (len(self.inconclusive)))
            for r in self.inconclusive:
                lines.append('  %s' % (str(r)))
        return '\n'.join(lines) + '\n'

    def save(self, fpath : str, fmt : str = 'text'):
        with open(fpath, 'w') as fd:
            if fmt == 'json':
                json.dump(self.to_dict(), fd, indent=2)
                fd.write('\n')
            else:
                fd.write(self.to_text())
